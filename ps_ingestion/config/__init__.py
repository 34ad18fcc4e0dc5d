"""Configuration package."""

from ps_ingestion.config.logging import configure_logging, get_logger
from ps_ingestion.config.settings import Settings, settings

__all__ = ["settings", "Settings", "configure_logging", "get_logger"]
