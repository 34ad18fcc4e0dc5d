"""Business services package."""

from ps_ingestion.services.alerting import AlertSink, LoggingAlertSink, SNSAlertSink
from ps_ingestion.services.run_store import DynamoDBRunStore, InMemoryRunStore, RunStore

__all__ = [
    "AlertSink",
    "DynamoDBRunStore",
    "InMemoryRunStore",
    "LoggingAlertSink",
    "RunStore",
    "SNSAlertSink",
]
