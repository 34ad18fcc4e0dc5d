"""Base class for stage invokers."""

import asyncio
from abc import ABC, abstractmethod
from typing import Mapping, Optional

from structlog import get_logger

from ps_ingestion.models import ErrorCategory, StageFailure, StageName

logger = get_logger(__name__)


class StageError(Exception):
    """Failure reported by a stage, carrying its retry category."""

    category = ErrorCategory.PERMANENT

    def __init__(self, message: str, error_type: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_type = error_type or self.__class__.__name__

    def to_failure(self) -> StageFailure:
        return StageFailure(
            category=self.category,
            message=self.message,
            error_type=self.error_type,
        )


class TransientStageError(StageError):
    """Network, timeout or throttling class failure. Retryable."""

    category = ErrorCategory.TRANSIENT


class PermanentStageError(StageError):
    """Validation or logic class failure. Not retryable."""

    category = ErrorCategory.PERMANENT


class StageTimeoutError(TransientStageError):
    """The stage did not return within its enforced time limit."""

    pass


class StageResult:
    """Outcome of one invocation: an output payload or a failure."""

    __slots__ = ("output", "failure")

    def __init__(self, output: Optional[str] = None, failure: Optional[StageFailure] = None):
        self.output = output
        self.failure = failure

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, output: Optional[str]) -> "StageResult":
        return cls(output=output)

    @classmethod
    def failed(cls, failure: StageFailure) -> "StageResult":
        return cls(failure=failure)

    def __repr__(self) -> str:
        if self.ok:
            return f"StageResult(output={self.output!r})"
        return f"StageResult(failure={self.failure!r})"


class StageInvoker(ABC):
    """Abstract base class for stage invokers.

    Each invoker should:
    1. Implement execute() for one unit of work
    2. Raise TransientStageError / PermanentStageError on failure
    3. Return the output payload (an opaque reference) on success

    Invokers are stateless and never retry; retry policy lives in the
    orchestrator.
    """

    def __init__(self, timeout_seconds: float, name: Optional[str] = None):
        """Initialize the invoker.

        Args:
            timeout_seconds: Enforced upper bound for a single invocation
            name: Optional custom name. Defaults to class name.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.timeout_seconds = timeout_seconds
        self.name = name or self.__class__.__name__
        self.logger = logger.bind(invoker=self.name)

    @abstractmethod
    async def execute(
        self,
        stage_name: StageName,
        payload: str,
        run_context: Optional[Mapping[str, str]] = None,
    ) -> Optional[str]:
        """Perform the stage's work.

        Args:
            stage_name: Stage being executed
            payload: Opaque stage input
            run_context: Read-only run identifiers ("run_id", "format")

        Returns:
            Opaque output consumed by the next stage
        """
        pass

    async def _execute_within_timeout(
        self,
        stage_name: StageName,
        payload: str,
        run_context: Optional[Mapping[str, str]],
    ) -> Optional[str]:
        # A TimeoutError raised by the stage is its own failure, not expiry of wait_for
        try:
            return await self.execute(stage_name, payload, run_context)
        except (TimeoutError, asyncio.TimeoutError) as e:
            raise TransientStageError(
                str(e) or type(e).__name__, error_type=type(e).__name__
            ) from e

    async def invoke(
        self,
        stage_name: StageName,
        payload: str,
        run_context: Optional[Mapping[str, str]] = None,
    ) -> StageResult:
        """Run the stage with timeout enforcement, error mapping and logging.

        Never raises for stage failures; they are returned as a failed
        StageResult.

        Args:
            stage_name: Stage being executed
            payload: Opaque stage input
            run_context: Read-only run identifiers ("run_id", "format")

        Returns:
            StageResult with the output or a categorised failure
        """
        log = self.logger.bind(stage=stage_name.value)
        log.info("Stage invocation starting", timeout_seconds=self.timeout_seconds)

        try:
            output = await asyncio.wait_for(
                self._execute_within_timeout(stage_name, payload, run_context),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = StageTimeoutError(
                f"{stage_name.value} did not complete within {self.timeout_seconds}s"
            )
            log.warning("Stage invocation timed out", error=error.message)
            return StageResult.failed(error.to_failure())
        except StageError as e:
            log.warning(
                "Stage invocation failed",
                category=e.category.value,
                error_type=e.error_type,
                error=e.message,
            )
            return StageResult.failed(e.to_failure())
        except Exception as e:
            log.error(
                "Stage invocation raised unexpected exception",
                error=str(e),
                exc_info=True,
            )
            return StageResult.failed(
                StageFailure(
                    category=ErrorCategory.PERMANENT,
                    message=str(e) or type(e).__name__,
                    error_type=type(e).__name__,
                )
            )

        log.info("Stage invocation succeeded", output=output)
        return StageResult.success(output)
