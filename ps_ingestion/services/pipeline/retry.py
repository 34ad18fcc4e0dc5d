"""Bounded per-stage retry policy."""

from typing import Literal

from pydantic import BaseModel, Field

from ps_ingestion.config import Settings
from ps_ingestion.models import StageFailure, StageName


class RetryPolicy(BaseModel):
    """Fixed or exponential backoff with a hard attempt bound."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff: Literal["fixed", "exponential"] = "exponential"
    base_delay_seconds: float = Field(default=2.0, ge=0)
    max_delay_seconds: float = Field(default=60.0, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        if self.backoff == "fixed":
            delay = self.base_delay_seconds
        else:
            delay = self.base_delay_seconds * (2 ** (attempt - 1))
        return min(delay, self.max_delay_seconds)

    def should_retry(self, failure: StageFailure, attempt: int) -> bool:
        return failure.is_transient and attempt < self.max_attempts

    @classmethod
    def from_settings(cls, config: Settings, stage: StageName) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts_for(stage.value),
            backoff=config.pipeline.backoff,
            base_delay_seconds=config.pipeline.base_delay_seconds,
            max_delay_seconds=config.pipeline.max_delay_seconds,
        )
