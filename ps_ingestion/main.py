"""Main entry point for the PS ingestion orchestrator."""

import argparse
import asyncio
import json
import sys
from typing import Any, Optional

from ps_ingestion.aws import DynamoDBManager, SNSManager
from ps_ingestion.aws.storage import StorageLocations
from ps_ingestion.config import Settings, configure_logging, get_logger, settings
from ps_ingestion.models import Format, RunStatus, StageName
from ps_ingestion.services import (
    AlertSink,
    DynamoDBRunStore,
    InMemoryRunStore,
    LoggingAlertSink,
    RunStore,
    SNSAlertSink,
)
from ps_ingestion.services.pipeline import PipelineOrchestrator, RetryPolicy
from ps_ingestion.services.pipeline.invokers import LambdaStageInvoker
from ps_ingestion.services.scheduler import IngestionScheduler, default_triggers

logger = get_logger(__name__)


def build_alert_sink(config: Settings) -> AlertSink:
    """SNS email alerts, or log-only alerts in dry run / without a topic."""
    if config.dry_run or not config.alert.topic_arn:
        if not config.dry_run:
            logger.warning("ALERT_TOPIC_ARN not set, alerts will only be logged")
        return LoggingAlertSink()
    return SNSAlertSink(
        SNSManager(config.alert.topic_arn),
        subject_prefix=config.alert_subject_prefix,
        max_attempts=config.alert.max_attempts,
    )


def build_run_store(config: Settings) -> RunStore:
    """DynamoDB run records when a runs table is configured, else in memory."""
    if config.runs_table:
        return DynamoDBRunStore(
            DynamoDBManager(config.runs_table),
            retention_days=config.run_retention_days,
        )
    return InMemoryRunStore()


def build_orchestrator(config: Settings = settings) -> PipelineOrchestrator:
    """Wire Lambda-backed stages, alerting and run persistence from settings."""
    storage = StorageLocations.from_settings(config)
    invokers = {
        stage: LambdaStageInvoker(
            function_name=config.function_name_for(stage.value),
            storage=storage,
            timeout_seconds=config.timeout_for(stage.value),
            transient_error_types=config.pipeline.transient_error_types,
        )
        for stage in StageName.ordered()
    }
    return PipelineOrchestrator(
        extract=invokers[StageName.EXTRACT],
        transform=invokers[StageName.TRANSFORM],
        load=invokers[StageName.LOAD],
        alert_sink=build_alert_sink(config),
        run_store=build_run_store(config),
        retry_policies={
            stage: RetryPolicy.from_settings(config, stage) for stage in StageName.ordered()
        },
    )


async def run_once(fmt: str, trigger_name: str = "manual") -> int:
    """Execute a single run and print its record.

    Returns:
        0 if the run succeeded, 1 otherwise
    """
    orchestrator = build_orchestrator()
    run = await orchestrator.start_run(fmt, trigger_name=trigger_name)
    print(json.dumps(run.to_record(), indent=2, default=str))
    return 0 if run.status == RunStatus.SUCCEEDED else 1


async def run_scheduler() -> int:
    """Run the daily triggers until interrupted."""
    if not settings.schedule.enabled:
        logger.error("Scheduling disabled (SCHEDULE_ENABLED=false)")
        return 1
    scheduler = IngestionScheduler(build_orchestrator(), default_triggers(settings))
    for name, when in scheduler.next_fire_times().items():
        logger.info("Next scheduled run", trigger=name, next_fire_time=when.isoformat())
    await scheduler.run_forever()
    return 0


def show_status(run_id: str) -> int:
    """Print a persisted run record."""
    run = build_run_store(settings).get(run_id)
    if run is None:
        print(json.dumps({"error": f"Run not found: {run_id}"}))
        return 1
    print(json.dumps(run.to_record(), indent=2, default=str))
    return 0


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ps-ingestion",
        description="Orchestrate replay extraction, transform and team load runs.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Execute one pipeline run now")
    run_parser.add_argument(
        "--format",
        required=True,
        type=Format.parse,
        help=f"Format to ingest ({', '.join(f.value for f in Format)})",
    )

    subparsers.add_parser("schedule", help="Run the daily triggers until interrupted")

    status_parser = subparsers.add_parser("status", help="Show a persisted run record")
    status_parser.add_argument("run_id")

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = parse_args(argv)
    logger.info("Starting PS ingestion", environment=settings.environment, command=args.command)

    try:
        if args.command == "run":
            return asyncio.run(run_once(args.format.value))
        if args.command == "schedule":
            return asyncio.run(run_scheduler())
        return show_status(args.run_id)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except Exception as e:
        logger.error(
            "Fatal error in main application",
            error=str(e),
            exc_info=True,
        )
        return 1


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """AWS Lambda handler for scheduled rule events.

    Args:
        event: Rule target input, e.g. {"format": "OU"}
        context: Lambda context

    Returns:
        Lambda response dictionary
    """
    request_id = getattr(context, "aws_request_id", None)
    logger.info("Lambda invoked", environment=settings.environment, request_id=request_id)

    fmt = event.get("format")
    try:
        Format.parse(fmt or "")
    except ValueError as e:
        logger.error("Invalid event", request_id=request_id, error=str(e))
        return {"statusCode": 400, "body": json.dumps({"error": str(e)})}

    try:
        orchestrator = build_orchestrator()
        run = asyncio.run(
            orchestrator.start_run(fmt, trigger_name=event.get("trigger", "eventbridge"))
        )
    except Exception as e:
        logger.error(
            "Lambda execution failed",
            request_id=request_id,
            error=str(e),
            exc_info=True,
        )
        return {
            "statusCode": 500,
            "body": json.dumps({"error": str(e), "request_id": request_id}),
        }

    success = run.status == RunStatus.SUCCEEDED
    logger.info(
        "Lambda execution complete",
        request_id=request_id,
        run_id=run.run_id,
        success=success,
    )
    return {
        "statusCode": 200 if success else 500,
        "body": json.dumps(run.summary(), default=str),
    }


if __name__ == "__main__":
    configure_logging()
    sys.exit(main())
