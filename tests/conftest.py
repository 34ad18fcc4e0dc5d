"""Shared fixtures: scripted stages, a recording alert sink and fast retry policies."""

from typing import Optional, Union

import pytest

from ps_ingestion.models import AlertEvent, StageName
from ps_ingestion.services import AlertSink, InMemoryRunStore
from ps_ingestion.services.pipeline import PipelineOrchestrator, RetryPolicy
from ps_ingestion.services.pipeline.invokers import CallableStageInvoker

Outcome = Union[Optional[str], Exception]


class ScriptedStage:
    """Stage function returning (or raising) scripted outcomes in order.

    The last outcome repeats once the script is exhausted.
    """

    def __init__(self, *outcomes: Outcome):
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    async def run(self, payload: str) -> Optional[str]:
        self.calls.append(payload)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingAlertSink(AlertSink):
    def __init__(self):
        self.events: list[AlertEvent] = []

    async def notify(self, event: AlertEvent) -> None:
        self.events.append(event)


@pytest.fixture
def alert_sink():
    return RecordingAlertSink()


@pytest.fixture
def run_store():
    return InMemoryRunStore()


@pytest.fixture
def fast_policies():
    """Three attempts per stage, no waiting between them."""
    return {
        stage: RetryPolicy(max_attempts=3, base_delay_seconds=0.0)
        for stage in StageName.ordered()
    }


@pytest.fixture
def make_orchestrator(alert_sink, run_store, fast_policies):
    """Build an orchestrator around three ScriptedStage objects."""

    def _make(extract: ScriptedStage, transform: ScriptedStage, load: ScriptedStage, **kwargs):
        return PipelineOrchestrator(
            extract=CallableStageInvoker(extract.run, timeout_seconds=5, name="extract"),
            transform=CallableStageInvoker(transform.run, timeout_seconds=5, name="transform"),
            load=CallableStageInvoker(load.run, timeout_seconds=5, name="load"),
            alert_sink=kwargs.get("alert_sink", alert_sink),
            run_store=kwargs.get("run_store", run_store),
            retry_policies=kwargs.get("retry_policies", fast_policies),
        )

    return _make


RAW_REF = "s3://raw/ou/2024-01-01.json"
PROCESSED_REF = "s3://processed/ou/2024-01-01.json"
TABLE_REF = "dynamodb://PsIngestionTeamsTable-dev/OU"


@pytest.fixture
def happy_stages():
    return (
        ScriptedStage(RAW_REF),
        ScriptedStage(PROCESSED_REF),
        ScriptedStage(TABLE_REF),
    )
