"""Daily cron triggers that start pipeline runs."""

import asyncio
from datetime import datetime
from typing import Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, field_validator
from structlog import get_logger

from ps_ingestion.config import Settings
from ps_ingestion.models import Format, PipelineRun
from ps_ingestion.services.pipeline import PipelineOrchestrator

logger = get_logger(__name__)


class ScheduledTrigger(BaseModel):
    """A named wall-clock trigger carrying the format to ingest."""

    name: str
    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)
    format: Format
    timezone: str = "UTC"

    @field_validator("format", mode="before")
    @classmethod
    def _parse_format(cls, value):
        return Format.parse(value)

    @property
    def job_id(self) -> str:
        return f"ingestion-{self.name}"

    def cron_trigger(self) -> CronTrigger:
        return CronTrigger(hour=self.hour, minute=self.minute, timezone=self.timezone)


def default_triggers(config: Settings) -> list[ScheduledTrigger]:
    """The two daily triggers: OU at 22:00 and VGC at 22:15 (UTC by default)."""
    schedule = config.schedule
    return [
        ScheduledTrigger(
            name="ou-daily",
            hour=schedule.ou_hour,
            minute=schedule.ou_minute,
            format=Format.OU,
            timezone=schedule.timezone,
        ),
        ScheduledTrigger(
            name="vgc-daily",
            hour=schedule.vgc_hour,
            minute=schedule.vgc_minute,
            format=Format.VGC,
            timezone=schedule.timezone,
        ),
    ]


class IngestionScheduler:
    """Fires a new PipelineRun for each trigger, independent of earlier runs."""

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        triggers: Iterable[ScheduledTrigger],
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.orchestrator = orchestrator
        self.triggers: dict[str, ScheduledTrigger] = {}
        for trigger in triggers:
            if trigger.name in self.triggers:
                raise ValueError(f"Duplicate trigger name: {trigger.name}")
            self.triggers[trigger.name] = trigger
        self.scheduler = scheduler or AsyncIOScheduler()
        self._registered = False

    async def fire(self, trigger_name: str) -> PipelineRun:
        """Start exactly one run for a trigger and wait for it to finish.

        Raises:
            KeyError: If the trigger is unknown
        """
        trigger = self.triggers[trigger_name]
        logger.info(
            "Trigger fired",
            trigger=trigger.name,
            format=trigger.format.value,
        )
        run = await self.orchestrator.start_run(trigger.format, trigger_name=trigger.name)
        logger.info(
            "Triggered run finished",
            trigger=trigger.name,
            run_id=run.run_id,
            status=run.status.value,
        )
        return run

    async def _run_job(self, trigger_name: str) -> None:
        try:
            await self.fire(trigger_name)
        except Exception as e:
            logger.error(
                "Scheduled run raised unexpected exception",
                trigger=trigger_name,
                error=str(e),
                exc_info=True,
            )

    def register_jobs(self) -> None:
        """Add one cron job per trigger."""
        for trigger in self.triggers.values():
            self.scheduler.add_job(
                self._run_job,
                trigger=trigger.cron_trigger(),
                args=[trigger.name],
                id=trigger.job_id,
                name=f"{trigger.format.value} ingestion",
                replace_existing=True,
                coalesce=True,
                max_instances=3,
                misfire_grace_time=15 * 60,
            )
            logger.info(
                "Scheduled trigger",
                trigger=trigger.name,
                format=trigger.format.value,
                hour=trigger.hour,
                minute=trigger.minute,
                timezone=trigger.timezone,
            )
        self._registered = True

    def start(self) -> None:
        """Start the scheduler. Must be called with a running event loop."""
        if not self._registered:
            self.register_jobs()
        self.scheduler.start()
        logger.info("Ingestion scheduler started", trigger_count=len(self.triggers))

    def shutdown(self) -> None:
        self.scheduler.shutdown(wait=False)
        logger.info("Ingestion scheduler stopped")

    def next_fire_times(self, now: Optional[datetime] = None) -> dict[str, datetime]:
        """Next fire time per trigger, computed from the cron expressions."""
        times: dict[str, datetime] = {}
        for trigger in self.triggers.values():
            cron = trigger.cron_trigger()
            reference = now or datetime.now(cron.timezone)
            next_time = cron.get_next_fire_time(None, reference)
            if next_time is not None:
                times[trigger.name] = next_time
        return times

    async def run_forever(self) -> None:
        """Start the scheduler and block until cancelled."""
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            self.shutdown()
