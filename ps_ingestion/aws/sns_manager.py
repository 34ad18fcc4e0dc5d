"""AWS SNS Manager for failure notifications."""

from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from structlog import get_logger

from ps_ingestion.aws.client_factory import get_boto3_client_kwargs

logger = get_logger(__name__)


class SNSPublishError(Exception):
    """Raised when publishing to SNS fails."""

    pass


class SNSManager:
    """Publishes messages to the email notification topic."""

    def __init__(self, topic_arn: str):
        """Initialize SNS Manager.

        Args:
            topic_arn: ARN of the topic the alert email is subscribed to
        """
        self.topic_arn = topic_arn
        self.sns_client = boto3.client("sns", **get_boto3_client_kwargs("sns"))

    def publish(
        self,
        subject: str,
        message: str,
        attributes: Optional[dict[str, str]] = None,
    ) -> dict[str, str]:
        """Publish a message to the topic.

        Args:
            subject: Email subject line
            message: Message body
            attributes: Optional string message attributes

        Returns:
            Dictionary with 'message_id' of the published message

        Raises:
            SNSPublishError: If publishing fails
        """
        message_attributes = {
            key: {"DataType": "String", "StringValue": value}
            for key, value in (attributes or {}).items()
        }

        try:
            response = self.sns_client.publish(
                TopicArn=self.topic_arn,
                Subject=subject,
                Message=message,
                MessageAttributes=message_attributes,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to publish SNS message",
                topic_arn=self.topic_arn,
                error=str(e),
            )
            raise SNSPublishError(
                f"Failed to publish to {self.topic_arn}: {str(e)}"
            ) from e

        message_id = response["MessageId"]
        logger.info(
            "Published SNS message",
            topic_arn=self.topic_arn,
            message_id=message_id,
        )
        return {"message_id": message_id}
