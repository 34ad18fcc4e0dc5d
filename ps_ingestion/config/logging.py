"""Structured logging configuration using structlog."""
import logging
import sys
from typing import Any, Optional

import structlog
from pythonjsonlogger import jsonlogger

from ps_ingestion.config.settings import LoggingSettings, settings

# SDK and scheduler internals log every request and job lookup at INFO
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "apscheduler")

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def add_run_prefix(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Prefix the event with the bound format and stage, e.g. "[OU/extract]".

    Runs before rendering so the prefix shows in JSON and console output.
    """
    fmt = event_dict.get("format")
    if not fmt:
        return event_dict

    label = str(getattr(fmt, "value", fmt))
    stage = event_dict.get("stage")
    if stage:
        label = f"{label}/{getattr(stage, 'value', stage)}"
    event_dict["event"] = f"[{label}] {event_dict.get('event', '')}"
    return event_dict


def _build_handler(config: LoggingSettings, level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if config.format == "json":
        handler.setFormatter(jsonlogger.JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handler.setLevel(level)
    return handler


def configure_logging(config: Optional[LoggingSettings] = None) -> None:
    """Configure stdlib logging and structlog.

    Args:
        config: Logging settings. Defaults to the application settings.
    """
    config = config or settings.logging
    log_level = getattr(logging, config.level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_build_handler(config, log_level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_run_prefix,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Get a logger for a module, typically called with __name__."""
    return structlog.get_logger(name)
