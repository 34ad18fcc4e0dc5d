"""Tests for the daily ingestion scheduler."""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from pydantic import ValidationError

from ps_ingestion.config import Settings
from ps_ingestion.models import Format, RunStatus
from ps_ingestion.services.pipeline import PermanentStageError
from ps_ingestion.services.scheduler import (
    IngestionScheduler,
    ScheduledTrigger,
    default_triggers,
)
from tests.conftest import PROCESSED_REF, RAW_REF, TABLE_REF, ScriptedStage


@pytest.fixture
def triggers():
    return default_triggers(Settings())


def _cron_fields(cron) -> dict[str, str]:
    return {field.name: str(field) for field in cron.fields}


class TestTriggers:
    def test_default_triggers(self, triggers):
        by_name = {t.name: t for t in triggers}

        assert by_name["ou-daily"].format == Format.OU
        assert (by_name["ou-daily"].hour, by_name["ou-daily"].minute) == (22, 0)
        assert by_name["vgc-daily"].format == Format.VGC
        assert (by_name["vgc-daily"].hour, by_name["vgc-daily"].minute) == (22, 15)
        assert all(t.timezone == "UTC" for t in triggers)

    def test_invalid_time_rejected(self):
        with pytest.raises(ValidationError):
            ScheduledTrigger(name="late", hour=24, minute=0, format="OU")

    def test_cron_trigger(self):
        trigger = ScheduledTrigger(name="vgc-daily", hour=22, minute=15, format="vgc")

        fields = _cron_fields(trigger.cron_trigger())

        assert fields["hour"] == "22"
        assert fields["minute"] == "15"
        assert trigger.job_id == "ingestion-vgc-daily"


class TestIngestionScheduler:
    def test_duplicate_trigger_names(self, make_orchestrator, happy_stages):
        trigger = ScheduledTrigger(name="ou-daily", hour=22, minute=0, format=Format.OU)

        with pytest.raises(ValueError):
            IngestionScheduler(make_orchestrator(*happy_stages), [trigger, trigger])

    def test_register_jobs(self, make_orchestrator, happy_stages, triggers):
        apscheduler = Mock()
        scheduler = IngestionScheduler(make_orchestrator(*happy_stages), triggers, scheduler=apscheduler)

        scheduler.register_jobs()

        assert apscheduler.add_job.call_count == 2
        jobs = {c.kwargs["id"]: c.kwargs for c in apscheduler.add_job.call_args_list}
        assert set(jobs) == {"ingestion-ou-daily", "ingestion-vgc-daily"}
        assert jobs["ingestion-ou-daily"]["args"] == ["ou-daily"]
        assert _cron_fields(jobs["ingestion-vgc-daily"]["trigger"])["minute"] == "15"

    def test_next_fire_times(self, make_orchestrator, happy_stages, triggers):
        scheduler = IngestionScheduler(make_orchestrator(*happy_stages), triggers, scheduler=Mock())
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

        times = scheduler.next_fire_times(now)

        assert times["ou-daily"].astimezone(timezone.utc) == datetime(2024, 1, 1, 22, 0, tzinfo=timezone.utc)
        assert times["vgc-daily"].astimezone(timezone.utc) == datetime(2024, 1, 1, 22, 15, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_fire_creates_one_run(self, make_orchestrator, happy_stages, triggers):
        extract = happy_stages[0]
        scheduler = IngestionScheduler(make_orchestrator(*happy_stages), triggers, scheduler=Mock())

        run = await scheduler.fire("ou-daily")

        assert run.status == RunStatus.SUCCEEDED
        assert run.format == Format.OU
        assert run.trigger_name == "ou-daily"
        assert extract.calls == ["OU"]

    @pytest.mark.asyncio
    async def test_fire_is_independent_of_previous_failure(self, make_orchestrator, alert_sink, triggers):
        extract = ScriptedStage(PermanentStageError("replay site down"), RAW_REF)
        orchestrator = make_orchestrator(extract, ScriptedStage(PROCESSED_REF), ScriptedStage(TABLE_REF))
        scheduler = IngestionScheduler(orchestrator, triggers, scheduler=Mock())

        first = await scheduler.fire("vgc-daily")
        second = await scheduler.fire("vgc-daily")

        assert first.status == RunStatus.FAILED
        assert second.status == RunStatus.SUCCEEDED
        assert first.run_id != second.run_id
        assert len(alert_sink.events) == 1

    @pytest.mark.asyncio
    async def test_fire_unknown_trigger(self, make_orchestrator, happy_stages, triggers):
        scheduler = IngestionScheduler(make_orchestrator(*happy_stages), triggers, scheduler=Mock())

        with pytest.raises(KeyError):
            await scheduler.fire("gen1-daily")

    @pytest.mark.asyncio
    async def test_scheduled_job_swallows_errors(self, triggers):
        orchestrator = Mock()
        orchestrator.start_run = Mock(side_effect=RuntimeError("boom"))
        scheduler = IngestionScheduler(orchestrator, triggers, scheduler=Mock())

        await scheduler._run_job("ou-daily")

        orchestrator.start_run.assert_called_once()
