"""Alert sinks notified when a pipeline run fails."""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from structlog import get_logger

from ps_ingestion.aws import SNSManager, SNSPublishError
from ps_ingestion.models import AlertEvent

logger = get_logger(__name__)


class AlertSink(ABC):
    """Receives one AlertEvent per failed run.

    Delivery is best effort: implementations log delivery failures and
    never raise them back into the orchestrator.
    """

    @abstractmethod
    async def notify(self, event: AlertEvent) -> None:
        pass


class LoggingAlertSink(AlertSink):
    """Writes alerts to the log only. Used for dry runs and local runs."""

    async def notify(self, event: AlertEvent) -> None:
        logger.error(
            "Pipeline run failed",
            run_id=event.run_id,
            format=event.format.value,
            failed_stage=event.failed_stage.value,
            error_category=event.error_category.value,
            attempts=event.attempts,
            reason=event.reason,
        )


class SNSAlertSink(AlertSink):
    """Publishes alerts to the email SNS topic, at least once."""

    def __init__(
        self,
        sns_manager: SNSManager,
        subject_prefix: str = "",
        max_attempts: int = 3,
        retry_backoff_base: float = 2.0,
    ):
        """Initialize the sink.

        Args:
            sns_manager: Manager bound to the alert topic
            subject_prefix: Prepended to every email subject
            max_attempts: Publish attempts before giving up
            retry_backoff_base: Exponential backoff base in seconds
        """
        self.sns_manager = sns_manager
        self.subject_prefix = subject_prefix
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_base = retry_backoff_base

    async def notify(self, event: AlertEvent) -> None:
        subject = event.subject(self.subject_prefix)
        body = event.body()
        attributes = {
            "RunId": event.run_id,
            "Format": event.format.value,
            "FailedStage": event.failed_stage.value,
        }

        last_error: Optional[Exception] = None
        for attempt in range(self.max_attempts):
            try:
                result = await asyncio.to_thread(
                    self.sns_manager.publish, subject, body, attributes
                )
                logger.info(
                    "Alert delivered",
                    run_id=event.run_id,
                    message_id=result["message_id"],
                    attempt=attempt + 1,
                )
                return
            except SNSPublishError as e:
                last_error = e
                if attempt < self.max_attempts - 1:
                    wait_time = self.retry_backoff_base ** attempt
                    logger.warning(
                        "Alert delivery failed, retrying",
                        run_id=event.run_id,
                        attempt=attempt + 1,
                        max_attempts=self.max_attempts,
                        wait_seconds=wait_time,
                        error=str(e),
                    )
                    await asyncio.sleep(wait_time)

        logger.error(
            "Alert delivery failed, giving up",
            run_id=event.run_id,
            failed_stage=event.failed_stage.value,
            reason=event.reason,
            error=str(last_error),
        )
