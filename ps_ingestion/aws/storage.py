"""Names of the storage areas the stages read and write."""

from pydantic import BaseModel

from ps_ingestion.config import Settings
from ps_ingestion.models import Format, StageName


class StorageLocations(BaseModel):
    """Replays bucket, teams bucket and teams table, addressed by name only.

    Every location handed to a stage is namespaced by format so that runs
    of different formats never write to the same prefix.
    """

    replays_bucket: str
    teams_bucket: str
    teams_table: str

    @classmethod
    def from_settings(cls, config: Settings) -> "StorageLocations":
        return cls(
            replays_bucket=config.replays_bucket,
            teams_bucket=config.teams_bucket,
            teams_table=config.teams_table,
        )

    def table_ref(self, fmt: Format) -> str:
        return f"dynamodb://{self.teams_table}/{fmt.value}"

    def output_prefix(self, stage: StageName, fmt: Format) -> str:
        """Where a stage should write its output for a format."""
        if stage == StageName.EXTRACT:
            return f"s3://{self.replays_bucket}/{fmt.value.lower()}/"
        if stage == StageName.TRANSFORM:
            return f"s3://{self.teams_bucket}/{fmt.value.lower()}/"
        return self.table_ref(fmt)
