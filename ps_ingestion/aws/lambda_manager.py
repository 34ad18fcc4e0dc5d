"""AWS Lambda Manager for synchronous stage function invocation."""

import json
from typing import Any, Optional

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
)
from structlog import get_logger

from ps_ingestion.aws.client_factory import get_boto3_client_kwargs

logger = get_logger(__name__)

# Lambda API error codes worth retrying
RETRYABLE_ERROR_CODES = frozenset(
    {
        "TooManyRequestsException",
        "ServiceException",
        "ResourceNotReadyException",
        "ResourceConflictException",
        "EC2ThrottledException",
        "ThrottlingException",
        "RequestTimeout",
    }
)


class LambdaInvocationError(Exception):
    """Raised when a Lambda invocation fails before the function returns."""

    def __init__(self, message: str, error_code: str, retryable: bool):
        super().__init__(message)
        self.error_code = error_code
        self.retryable = retryable


class LambdaFunctionError(Exception):
    """Raised when the invoked function itself reports an error."""

    def __init__(self, message: str, error_type: str):
        super().__init__(message)
        self.error_type = error_type


class LambdaManager:
    """Invokes stage functions with the RequestResponse invocation type."""

    def __init__(self):
        self.lambda_client = boto3.client("lambda", **get_boto3_client_kwargs("lambda"))

    def _decode_payload(self, raw: bytes) -> Any:
        if not raw:
            return None
        text = raw.decode("utf-8")
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    def invoke_function(
        self,
        function_name: str,
        payload: dict[str, Any],
    ) -> Optional[Any]:
        """Invoke a function and return its decoded response payload.

        Args:
            function_name: Lambda function name or ARN
            payload: JSON-serialisable event

        Returns:
            Decoded JSON response (or raw text, or None when empty)

        Raises:
            LambdaInvocationError: If the Lambda API call fails
            LambdaFunctionError: If the function returned an error
        """
        logger.info("Invoking Lambda function", function_name=function_name)

        try:
            response = self.lambda_client.invoke(
                FunctionName=function_name,
                InvocationType="RequestResponse",
                Payload=json.dumps(payload, default=str).encode("utf-8"),
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            retryable = error_code in RETRYABLE_ERROR_CODES
            logger.error(
                "Lambda invocation failed",
                function_name=function_name,
                error_code=error_code,
                retryable=retryable,
                error=str(e),
            )
            raise LambdaInvocationError(
                f"Failed to invoke {function_name}: {str(e)}",
                error_code=error_code,
                retryable=retryable,
            ) from e
        except (BotoConnectionError, ConnectTimeoutError, ReadTimeoutError) as e:
            logger.warning(
                "Lambda invocation connection error",
                function_name=function_name,
                error=str(e),
            )
            raise LambdaInvocationError(
                f"Connection error invoking {function_name}: {str(e)}",
                error_code=type(e).__name__,
                retryable=True,
            ) from e
        except BotoCoreError as e:
            logger.error(
                "Unexpected botocore error invoking Lambda",
                function_name=function_name,
                error=str(e),
            )
            raise LambdaInvocationError(
                f"Unexpected error invoking {function_name}: {str(e)}",
                error_code=type(e).__name__,
                retryable=False,
            ) from e

        body = self._decode_payload(response["Payload"].read())

        if response.get("FunctionError"):
            error_type = "Unhandled"
            message = str(body)
            if isinstance(body, dict):
                error_type = body.get("errorType", error_type)
                message = body.get("errorMessage", message)
            logger.warning(
                "Lambda function returned an error",
                function_name=function_name,
                error_type=error_type,
                error=message,
            )
            raise LambdaFunctionError(message, error_type=error_type)

        logger.info(
            "Lambda function completed",
            function_name=function_name,
            status_code=response.get("StatusCode"),
        )
        return body
