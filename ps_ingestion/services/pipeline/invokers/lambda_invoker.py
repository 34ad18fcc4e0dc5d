"""Invoker backed by an AWS Lambda container function."""

import asyncio
import json
from typing import Any, Iterable, Mapping, Optional

from ps_ingestion.aws import LambdaFunctionError, LambdaInvocationError, LambdaManager
from ps_ingestion.aws.storage import StorageLocations
from ps_ingestion.models import Format, StageName
from ps_ingestion.services.pipeline.invoker import (
    PermanentStageError,
    StageInvoker,
    TransientStageError,
)

# Keys a stage function may use to return its artifact reference
ARTIFACT_KEYS = ("artifactRef", "location", "key")


class LambdaStageInvoker(StageInvoker):
    """Invoke a stage function synchronously and classify its failures.

    The event sent to the function is::

        {"format": "OU", "input": "<payload>", "outputPrefix": "s3://...", "runId": "..."}
    """

    def __init__(
        self,
        function_name: str,
        storage: StorageLocations,
        timeout_seconds: float,
        transient_error_types: Iterable[str] = (),
        lambda_manager: Optional[LambdaManager] = None,
    ):
        super().__init__(timeout_seconds, name=function_name)
        self.function_name = function_name
        self.storage = storage
        self.transient_error_types = frozenset(transient_error_types)
        self.lambda_manager = lambda_manager or LambdaManager()

    def build_event(
        self,
        stage_name: StageName,
        payload: str,
        run_context: Optional[Mapping[str, str]] = None,
    ) -> dict[str, Any]:
        context = dict(run_context or {})
        fmt = Format.parse(context.get("format") or payload)
        return {
            "format": fmt.value,
            "input": payload,
            "outputPrefix": self.storage.output_prefix(stage_name, fmt),
            "runId": context.get("run_id"),
        }

    def _unwrap_handler_response(self, body: Any) -> Any:
        """Return the body of a container-style {"statusCode", "body"} response.

        Raises:
            TransientStageError: On a 5xx status
            PermanentStageError: On any other non-2xx status
        """
        if not (isinstance(body, dict) and "statusCode" in body):
            return body

        status = int(body["statusCode"])
        inner = body.get("body")
        if isinstance(inner, str):
            try:
                inner = json.loads(inner)
            except json.JSONDecodeError:
                pass

        if not 200 <= status < 300:
            message = inner.get("error") if isinstance(inner, dict) else inner
            message = f"{self.function_name} returned status {status}: {message}"
            if status >= 500:
                raise TransientStageError(message, error_type=f"HTTP{status}")
            raise PermanentStageError(message, error_type=f"HTTP{status}")
        return inner

    def _artifact_from_response(
        self,
        stage_name: StageName,
        body: Any,
        event: dict[str, Any],
    ) -> str:
        body = self._unwrap_handler_response(body)
        if isinstance(body, str) and body:
            return body
        if isinstance(body, dict):
            for key in ARTIFACT_KEYS:
                if body.get(key):
                    return str(body[key])
        if stage_name == StageName.LOAD:
            # The writer function returns nothing; its artifact is the table it wrote to
            return event["outputPrefix"]
        raise PermanentStageError(
            f"{self.function_name} returned no artifact reference",
            error_type="MissingArtifactReference",
        )

    async def execute(
        self,
        stage_name: StageName,
        payload: str,
        run_context: Optional[Mapping[str, str]] = None,
    ) -> Optional[str]:
        try:
            event = self.build_event(stage_name, payload, run_context)
        except ValueError as e:
            raise PermanentStageError(str(e), error_type="InvalidFormat") from e

        try:
            body = await asyncio.to_thread(
                self.lambda_manager.invoke_function,
                self.function_name,
                event,
            )
        except LambdaInvocationError as e:
            if e.retryable:
                raise TransientStageError(str(e), error_type=e.error_code) from e
            raise PermanentStageError(str(e), error_type=e.error_code) from e
        except LambdaFunctionError as e:
            if e.error_type in self.transient_error_types:
                raise TransientStageError(str(e), error_type=e.error_type) from e
            raise PermanentStageError(str(e), error_type=e.error_type) from e

        return self._artifact_from_response(stage_name, body, event)
