"""Persistence of pipeline run records for operator diagnosis."""

import json
from abc import ABC, abstractmethod
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

from structlog import get_logger

from ps_ingestion.aws import DynamoDBManager
from ps_ingestion.models import Format, PipelineRun

logger = get_logger(__name__)


class RunStore(ABC):
    """Stores run records so terminal status and failure reason stay queryable."""

    @abstractmethod
    def save(self, run: PipelineRun) -> None:
        pass

    @abstractmethod
    def get(self, run_id: str) -> Optional[PipelineRun]:
        pass

    @abstractmethod
    def list_recent(self, fmt: Optional[Format] = None, limit: int = 20) -> list[PipelineRun]:
        pass


class InMemoryRunStore(RunStore):
    """Process-local store. Records are snapshots, not live runs."""

    def __init__(self):
        self._records: dict[str, dict[str, Any]] = {}

    def save(self, run: PipelineRun) -> None:
        self._records[run.run_id] = run.to_record()

    def get(self, run_id: str) -> Optional[PipelineRun]:
        record = self._records.get(run_id)
        return PipelineRun.from_record(record) if record else None

    def list_recent(self, fmt: Optional[Format] = None, limit: int = 20) -> list[PipelineRun]:
        runs = [PipelineRun.from_record(r) for r in self._records.values()]
        if fmt is not None:
            runs = [r for r in runs if r.format == fmt]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[:limit]


def _from_dynamodb(value: Any) -> Any:
    """Convert DynamoDB Decimals back to int/float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class DynamoDBRunStore(RunStore):
    """Run records in a DynamoDB table keyed by ``run_id``.

    Items carry an ``expires_at`` epoch attribute for the table's TTL.
    """

    def __init__(self, dynamodb_manager: DynamoDBManager, retention_days: int = 14):
        self.dynamodb_manager = dynamodb_manager
        self.retention = timedelta(days=retention_days)

    def save(self, run: PipelineRun) -> None:
        item = run.to_record()
        item["expires_at"] = int((run.created_at + self.retention).timestamp())
        self.dynamodb_manager.put_item(item)
        logger.debug("Saved run record", run_id=run.run_id, status=run.status.value)

    def _to_run(self, item: dict[str, Any]) -> PipelineRun:
        record = json.loads(json.dumps(item, default=_from_dynamodb))
        record.pop("expires_at", None)
        return PipelineRun.from_record(record)

    def get(self, run_id: str) -> Optional[PipelineRun]:
        item = self.dynamodb_manager.get_item({"run_id": run_id})
        return self._to_run(item) if item else None

    def list_recent(self, fmt: Optional[Format] = None, limit: int = 20) -> list[PipelineRun]:
        filters = {"format": fmt.value} if fmt is not None else None
        # Scan order is arbitrary: read generously, then sort
        items = self.dynamodb_manager.scan_items(filters=filters, limit=max(limit * 5, 100))
        runs = sorted((self._to_run(i) for i in items), key=lambda r: r.created_at, reverse=True)
        return runs[:limit]
