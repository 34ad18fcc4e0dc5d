"""Pipeline infrastructure for staged ingestion runs."""

from .invoker import (
    PermanentStageError,
    StageError,
    StageInvoker,
    StageResult,
    StageTimeoutError,
    TransientStageError,
)
from .orchestrator import InvalidTransitionError, OrchestrationError, PipelineOrchestrator
from .retry import RetryPolicy

__all__ = [
    "InvalidTransitionError",
    "OrchestrationError",
    "PermanentStageError",
    "PipelineOrchestrator",
    "RetryPolicy",
    "StageError",
    "StageInvoker",
    "StageResult",
    "StageTimeoutError",
    "TransientStageError",
]
