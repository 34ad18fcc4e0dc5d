"""AWS services package."""

from ps_ingestion.aws.dynamodb_manager import DynamoDBError, DynamoDBManager
from ps_ingestion.aws.lambda_manager import (
    LambdaFunctionError,
    LambdaInvocationError,
    LambdaManager,
)
from ps_ingestion.aws.sns_manager import SNSManager, SNSPublishError

__all__ = [
    "DynamoDBError",
    "DynamoDBManager",
    "LambdaFunctionError",
    "LambdaInvocationError",
    "LambdaManager",
    "SNSManager",
    "SNSPublishError",
]
