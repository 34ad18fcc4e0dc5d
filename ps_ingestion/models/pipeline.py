"""Pydantic models for pipeline runs and stage invocations."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Format(str, Enum):
    """Competitive format tags a run can ingest."""

    OU = "OU"
    VGC = "VGC"

    @classmethod
    def parse(cls, value: "str | Format") -> "Format":
        """Parse a format tag case-insensitively.

        Raises:
            ValueError: If the tag is not one of the known formats
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise ValueError(f"Unknown format {value!r}; expected one of: {valid}") from None


class StageName(str, Enum):
    """Pipeline stages, declared in execution order."""

    EXTRACT = "extract"
    TRANSFORM = "transform"
    LOAD = "load"

    @classmethod
    def ordered(cls) -> list["StageName"]:
        return [cls.EXTRACT, cls.TRANSFORM, cls.LOAD]


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class RunState(str, Enum):
    """States of the orchestrator state machine."""

    START = "START"
    EXTRACTING = "EXTRACTING"
    TRANSFORMING = "TRANSFORMING"
    LOADING = "LOADING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED)


# Active state while a given stage is running
STAGE_STATES: dict[StageName, RunState] = {
    StageName.EXTRACT: RunState.EXTRACTING,
    StageName.TRANSFORM: RunState.TRANSFORMING,
    StageName.LOAD: RunState.LOADING,
}


class ErrorCategory(str, Enum):
    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"


class StageFailure(BaseModel):
    """Error descriptor produced by a failed stage invocation."""

    category: ErrorCategory
    message: str
    error_type: str = Field(default="StageError", description="Originating error class or code")

    @property
    def is_transient(self) -> bool:
        return self.category == ErrorCategory.TRANSIENT


class StageInvocation(BaseModel):
    """A single attempt to run a named stage."""

    stage_name: StageName
    attempt_number: int = Field(ge=1)
    input: str
    output: Optional[str] = None
    error: Optional[StageFailure] = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.finished_at is not None and self.error is None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


def _new_run_id(fmt: Format, created_at: datetime) -> str:
    return f"{fmt.value.lower()}-{created_at:%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:8]}"


class PipelineRun(BaseModel):
    """One end-to-end execution of the ingestion pipeline for one format.

    Only the orchestrator mutates a run. Once ``state`` is terminal the
    record is final.
    """

    run_id: str = ""
    format: Format
    trigger_name: str = "manual"
    current_stage: StageName = StageName.EXTRACT
    state: RunState = RunState.START
    status: RunStatus = RunStatus.RUNNING
    stage_attempts: dict[StageName, int] = Field(
        default_factory=lambda: {stage: 0 for stage in StageName.ordered()}
    )
    artifact_refs: list[str] = Field(default_factory=list)
    invocations: list[StageInvocation] = Field(default_factory=list)
    failed_stage: Optional[StageName] = None
    failure: Optional[StageFailure] = None
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    def model_post_init(self, __context: Any) -> None:
        if not self.run_id:
            self.run_id = _new_run_id(self.format, self.created_at)

    @field_validator("format", mode="before")
    @classmethod
    def _parse_format(cls, value: Any) -> Format:
        return Format.parse(value)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def stages_completed(self) -> int:
        return len(self.artifact_refs)

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_record(self) -> dict[str, Any]:
        """Flat JSON-compatible record for the run store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "PipelineRun":
        return cls.model_validate(record)

    def summary(self) -> dict[str, Any]:
        """Short view used in logs and CLI output."""
        return {
            "run_id": self.run_id,
            "format": self.format.value,
            "status": self.status.value,
            "current_stage": self.current_stage.value,
            "stage_attempts": {stage.value: n for stage, n in self.stage_attempts.items()},
            "artifact_refs": list(self.artifact_refs),
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "reason": self.failure.message if self.failure else None,
        }
