"""Pipeline orchestrator: sequences extract, transform and load for one run."""

import asyncio
from typing import Mapping, Optional

from structlog import get_logger

from ps_ingestion.models import (
    STAGE_STATES,
    AlertEvent,
    ErrorCategory,
    Format,
    PipelineRun,
    RunState,
    RunStatus,
    StageFailure,
    StageInvocation,
    StageName,
)
from ps_ingestion.models.pipeline import utcnow
from ps_ingestion.services.alerting import AlertSink
from ps_ingestion.services.pipeline.invoker import StageInvoker, StageResult
from ps_ingestion.services.pipeline.retry import RetryPolicy
from ps_ingestion.services.run_store import InMemoryRunStore, RunStore

logger = get_logger(__name__)


class OrchestrationError(Exception):
    """Raised when the orchestrator is asked to do something invalid."""

    pass


class InvalidTransitionError(OrchestrationError):
    """Raised on a state change the state machine does not allow."""

    pass


_ACTIVE_EXITS = {RunState.FAILED, RunState.CANCELLED}

TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.START: {RunState.EXTRACTING, RunState.CANCELLED},
    RunState.EXTRACTING: {RunState.TRANSFORMING} | _ACTIVE_EXITS,
    RunState.TRANSFORMING: {RunState.LOADING} | _ACTIVE_EXITS,
    RunState.LOADING: {RunState.SUCCEEDED} | _ACTIVE_EXITS,
    RunState.SUCCEEDED: set(),
    RunState.FAILED: set(),
    RunState.CANCELLED: set(),
}

TERMINAL_STATUS = {
    RunState.SUCCEEDED: RunStatus.SUCCEEDED,
    RunState.FAILED: RunStatus.FAILED,
    RunState.CANCELLED: RunStatus.CANCELLED,
}


class PipelineOrchestrator:
    """State machine driving a PipelineRun through its three stages.

    The orchestrator:
    1. Runs stages strictly in order, one at a time
    2. Feeds each stage the previous stage's output (Extract gets the format)
    3. Retries Transient failures within each stage's RetryPolicy
    4. Fails the run on a Permanent failure or exhausted retries
    5. Emits exactly one AlertEvent per failed run
    6. Persists the run record as it progresses

    Runs share no mutable state, so several may execute concurrently.
    """

    def __init__(
        self,
        extract: StageInvoker,
        transform: StageInvoker,
        load: StageInvoker,
        alert_sink: AlertSink,
        run_store: Optional[RunStore] = None,
        retry_policies: Optional[Mapping[StageName, RetryPolicy]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            extract: Invoker for the extract stage
            transform: Invoker for the transform stage
            load: Invoker for the load stage
            alert_sink: Receives alerts for failed runs
            run_store: Where run records are persisted. Defaults to in-memory.
            retry_policies: Per-stage retry policy. Missing stages use RetryPolicy().
        """
        self.invokers: dict[StageName, StageInvoker] = {
            StageName.EXTRACT: extract,
            StageName.TRANSFORM: transform,
            StageName.LOAD: load,
        }
        self.alert_sink = alert_sink
        self.run_store = run_store if run_store is not None else InMemoryRunStore()
        policies = dict(retry_policies or {})
        self.retry_policies: dict[StageName, RetryPolicy] = {
            stage: policies.get(stage, RetryPolicy()) for stage in StageName.ordered()
        }
        # Runs currently executing, for cancellation requests
        self._active: dict[str, PipelineRun] = {}

    def create_run(self, fmt: "Format | str", trigger_name: str = "manual") -> PipelineRun:
        """Create a new run in the START state."""
        run = PipelineRun(format=Format.parse(fmt), trigger_name=trigger_name)
        logger.info(
            "Pipeline run created",
            run_id=run.run_id,
            format=run.format.value,
            trigger=trigger_name,
        )
        self._save(run)
        return run

    async def start_run(self, fmt: "Format | str", trigger_name: str = "manual") -> PipelineRun:
        """Create a run and drive it to completion."""
        return await self.execute(self.create_run(fmt, trigger_name))

    def request_cancel(self, run_id: str) -> bool:
        """Ask an active run to stop before its next stage.

        An in-flight stage invocation is not interrupted.

        Returns:
            True if the run is active on this orchestrator, False otherwise
        """
        run = self._active.get(run_id)
        if run is None:
            return False
        run.cancel_requested = True
        logger.info("Cancellation requested", run_id=run_id, format=run.format.value)
        return True

    def get_run(self, run_id: str) -> Optional[PipelineRun]:
        """Fetch the persisted record for a run."""
        return self.run_store.get(run_id)

    async def execute(self, run: PipelineRun) -> PipelineRun:
        """Drive a run from START to a terminal state.

        Args:
            run: Run in the START state

        Returns:
            The same run, now SUCCEEDED, FAILED or CANCELLED

        Raises:
            OrchestrationError: If the run was already started
        """
        if run.state != RunState.START:
            raise OrchestrationError(
                f"Run {run.run_id} is in state {run.state.value}, expected START"
            )

        log = logger.bind(run_id=run.run_id, format=run.format.value)
        log.info("Pipeline run starting", trigger=run.trigger_name)
        self._active[run.run_id] = run

        try:
            payload = run.format.value
            for stage in StageName.ordered():
                if run.cancel_requested:
                    log.warning("Run cancelled before stage", stage=stage.value)
                    self._transition(run, RunState.CANCELLED)
                    break

                run.current_stage = stage
                self._transition(run, STAGE_STATES[stage])

                result = await self._run_stage(run, stage, payload)
                if not result.ok:
                    run.failed_stage = stage
                    run.failure = result.failure
                    log.error(
                        "Stage failed, stopping pipeline",
                        stage=stage.value,
                        attempts=run.stage_attempts[stage],
                        category=result.failure.category.value,
                        reason=result.failure.message,
                    )
                    self._transition(run, RunState.FAILED)
                    break

                # Load may produce no further artifact
                if result.output is not None:
                    run.artifact_refs.append(result.output)
                    payload = result.output
                self._save(run)
            else:
                self._transition(run, RunState.SUCCEEDED)
        finally:
            self._active.pop(run.run_id, None)

        log.info("Pipeline run finished", **run.summary())
        self._save(run)

        if run.status == RunStatus.FAILED:
            await self._emit_alert(run)

        return run

    async def _run_stage(
        self,
        run: PipelineRun,
        stage: StageName,
        payload: str,
    ) -> StageResult:
        """Invoke a stage until it succeeds, fails permanently, or exhausts retries."""
        invoker = self.invokers[stage]
        policy = self.retry_policies[stage]
        run_context = {"run_id": run.run_id, "format": run.format.value}
        log = logger.bind(run_id=run.run_id, format=run.format.value, stage=stage.value)

        attempt = 0
        while True:
            attempt += 1
            run.stage_attempts[stage] = attempt
            invocation = StageInvocation(stage_name=stage, attempt_number=attempt, input=payload)
            log.info("Invoking stage", attempt=attempt, max_attempts=policy.max_attempts)

            try:
                result = await invoker.invoke(stage, payload, run_context)
            except Exception as e:
                log.error("Invoker raised unexpected exception", error=str(e), exc_info=True)
                result = StageResult.failed(
                    StageFailure(
                        category=ErrorCategory.PERMANENT,
                        message=str(e) or type(e).__name__,
                        error_type=type(e).__name__,
                    )
                )

            invocation.finished_at = utcnow()
            invocation.output = result.output
            invocation.error = result.failure
            run.invocations.append(invocation)
            run.touch()

            if result.ok:
                if result.output is None and stage != StageName.LOAD:
                    result = StageResult.failed(
                        StageFailure(
                            category=ErrorCategory.PERMANENT,
                            message=f"{stage.value} returned no output for the next stage",
                            error_type="MissingArtifactReference",
                        )
                    )
                    invocation.error = result.failure
                return result

            if not policy.should_retry(result.failure, attempt):
                if result.failure.is_transient:
                    log.error("Retries exhausted", attempts=attempt, reason=result.failure.message)
                return result

            delay = policy.delay_for(attempt)
            log.warning(
                "Transient stage failure, retrying",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                wait_seconds=delay,
                reason=result.failure.message,
            )
            await asyncio.sleep(delay)

    def _transition(self, run: PipelineRun, new_state: RunState) -> None:
        if new_state not in TRANSITIONS[run.state]:
            raise InvalidTransitionError(
                f"Run {run.run_id}: {run.state.value} -> {new_state.value} is not allowed"
            )
        run.state = new_state
        if new_state.is_terminal:
            run.status = TERMINAL_STATUS[new_state]
            run.finished_at = utcnow()
        run.touch()

    def _save(self, run: PipelineRun) -> None:
        try:
            self.run_store.save(run)
        except Exception as e:
            logger.error(
                "Failed to persist run record",
                run_id=run.run_id,
                status=run.status.value,
                error=str(e),
            )

    async def _emit_alert(self, run: PipelineRun) -> None:
        event = AlertEvent.from_failed_run(run)
        try:
            await self.alert_sink.notify(event)
        except Exception as e:
            logger.error(
                "Alert sink raised, alert not delivered",
                run_id=run.run_id,
                failed_stage=event.failed_stage.value,
                error=str(e),
            )
