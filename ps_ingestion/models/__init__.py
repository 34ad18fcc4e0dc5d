"""Pipeline data models."""

from ps_ingestion.models.alert import AlertEvent
from ps_ingestion.models.pipeline import (
    STAGE_STATES,
    ErrorCategory,
    Format,
    PipelineRun,
    RunState,
    RunStatus,
    StageFailure,
    StageInvocation,
    StageName,
)

__all__ = [
    "AlertEvent",
    "ErrorCategory",
    "Format",
    "PipelineRun",
    "RunState",
    "RunStatus",
    "STAGE_STATES",
    "StageFailure",
    "StageInvocation",
    "StageName",
]
