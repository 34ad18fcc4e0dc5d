"""Application settings and configuration management."""
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class AWSSettings(BaseSettings):
    """AWS resource names.

    Values may contain a ``{stage}`` placeholder which is replaced with the
    deployment stage (``dev`` / ``prod``) by :meth:`Settings.resolve`.
    """

    region: str = "us-west-2"
    read_timeout: int = 330  # Above the longest stage timeout

    replays_bucket: str = "ps-ingestion-replays-{stage}"
    teams_bucket: str = "ps-ingestion-teams-{stage}"
    teams_table: str = "PsIngestionTeamsTable-{stage}"
    runs_table: str = ""  # Empty keeps run records in memory

    extraction_function: str = "PsReplayExtractionLambda-{stage}"
    transform_function: str = "PsReplayTransformLambda-{stage}"
    ddb_writer_function: str = "PsTeamsDdbWriterLambda-{stage}"

    model_config = SettingsConfigDict(env_prefix="AWS_")


class PipelineSettings(BaseSettings):
    """Retry and timeout policy for pipeline stages."""

    max_attempts: int = 3
    backoff: Literal["fixed", "exponential"] = "exponential"
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 60.0

    # Per-stage overrides (None falls back to max_attempts)
    extract_max_attempts: Optional[int] = None
    transform_max_attempts: Optional[int] = None
    load_max_attempts: Optional[int] = None

    # Mirrors the Lambda function timeouts (5 minutes)
    extract_timeout_seconds: float = 300.0
    transform_timeout_seconds: float = 300.0
    load_timeout_seconds: float = 300.0

    # Lambda errorType values treated as retryable
    transient_error_types: list[str] = [
        "Sandbox.Timedout",
        "TransientError",
        "ThrottlingException",
        "ProvisionedThroughputExceededException",
        "SlowDown",
    ]

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")


class ScheduleSettings(BaseSettings):
    """Daily trigger times."""

    enabled: bool = True
    timezone: str = "UTC"

    # 10:00 PM UTC everyday (3:00 PM PST / 6:00 PM EST)
    ou_hour: int = 22
    ou_minute: int = 0

    # 10:15 PM UTC everyday (3:15 PM PST / 6:15 PM EST)
    vgc_hour: int = 22
    vgc_minute: int = 15

    model_config = SettingsConfigDict(env_prefix="SCHEDULE_")


class AlertSettings(BaseSettings):
    """Failure notification channel."""

    topic_arn: str = ""
    subject_prefix: str = "[PsIngestionService-{stage}]"
    max_attempts: int = 3

    model_config = SettingsConfigDict(env_prefix="ALERT_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "json"

    model_config = SettingsConfigDict(env_prefix="LOG_")


class Settings(BaseSettings):
    """Main application settings."""

    environment: Literal["dev", "prod"] = "dev"

    # Sub-settings
    aws: AWSSettings = AWSSettings()
    pipeline: PipelineSettings = PipelineSettings()
    schedule: ScheduleSettings = ScheduleSettings()
    alert: AlertSettings = AlertSettings()
    logging: LoggingSettings = LoggingSettings()

    # Run records are kept this long in the runs table (DynamoDB TTL)
    run_retention_days: int = 14

    # Feature flags
    dry_run: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    def resolve(self, template: str) -> str:
        """Interpolate the deployment stage into a resource name template."""
        return template.replace("{stage}", self.environment)

    def function_name_for(self, stage: str) -> str:
        """Lambda function name backing a pipeline stage ("extract", "transform", "load")."""
        templates = {
            "extract": self.aws.extraction_function,
            "transform": self.aws.transform_function,
            "load": self.aws.ddb_writer_function,
        }
        return self.resolve(templates[stage])

    def timeout_for(self, stage: str) -> float:
        """Enforced upper bound, in seconds, for one invocation of a stage."""
        return getattr(self.pipeline, f"{stage}_timeout_seconds")

    def max_attempts_for(self, stage: str) -> int:
        """Retry budget for a stage, honouring per-stage overrides."""
        override = getattr(self.pipeline, f"{stage}_max_attempts")
        return override if override is not None else self.pipeline.max_attempts

    @property
    def replays_bucket(self) -> str:
        return self.resolve(self.aws.replays_bucket)

    @property
    def teams_bucket(self) -> str:
        return self.resolve(self.aws.teams_bucket)

    @property
    def teams_table(self) -> str:
        return self.resolve(self.aws.teams_table)

    @property
    def runs_table(self) -> str:
        return self.resolve(self.aws.runs_table)

    @property
    def alert_subject_prefix(self) -> str:
        return self.resolve(self.alert.subject_prefix)


# Global settings instance
settings = Settings()
