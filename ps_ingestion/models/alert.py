"""Alert emitted when a pipeline run fails."""

from datetime import datetime

from pydantic import BaseModel, Field

from ps_ingestion.models.pipeline import (
    ErrorCategory,
    Format,
    PipelineRun,
    StageName,
    utcnow,
)


class AlertEvent(BaseModel):
    """Failure notification for a single run. Fire-and-forget."""

    run_id: str
    format: Format
    failed_stage: StageName
    reason: str
    error_category: ErrorCategory
    attempts: int = Field(ge=1)
    occurred_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_failed_run(cls, run: PipelineRun) -> "AlertEvent":
        """Build the alert for a run in the FAILED state."""
        if run.failed_stage is None or run.failure is None:
            raise ValueError(f"Run {run.run_id} has no recorded failure")
        return cls(
            run_id=run.run_id,
            format=run.format,
            failed_stage=run.failed_stage,
            reason=run.failure.message,
            error_category=run.failure.category,
            attempts=run.stage_attempts[run.failed_stage],
        )

    def subject(self, prefix: str = "") -> str:
        # SNS subjects are limited to 100 characters
        text = f"{prefix} {self.format.value} ingestion failed at {self.failed_stage.value}".strip()
        return text[:100]

    def body(self) -> str:
        return "\n".join(
            [
                f"Run: {self.run_id}",
                f"Format: {self.format.value}",
                f"Failed stage: {self.failed_stage.value}",
                f"Error category: {self.error_category.value}",
                f"Attempts: {self.attempts}",
                f"Reason: {self.reason}",
                f"Occurred at: {self.occurred_at.isoformat()}",
            ]
        )
