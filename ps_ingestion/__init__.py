"""Scheduled replay ingestion pipeline orchestrator."""

__version__ = "1.0.0"
