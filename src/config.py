"""Configuration for the workflow-run aggregation engine."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


class PipelineConfig(BaseModel):
    """Limits and filters passed explicitly into the engine."""

    gh_command: str = Field("gh", description="GitHub CLI executable")
    exclude_owners: set[str] = Field(
        default_factory=set,
        description="Owner/organization logins whose repositories are skipped",
    )
    include_archived: bool = Field(True, description="Query archived repositories too")
    repo_page_size: int = Field(50, ge=1, le=100, description="Repositories requested from the API")
    max_sources: int = Field(20, ge=0, description="Repositories actually queried")
    concurrency: int = Field(10, ge=1, le=64, description="Fetches in flight per category")
    max_recent: int = Field(40, ge=0, description="Recent runs kept after finalization")
    active_limit: int = Field(2, ge=1, description="Runs requested per status for active queries")
    recent_limit: int = Field(10, ge=1, description="Runs requested per repository for recent queries")
    process_timeout: float = Field(60.0, gt=0, description="Seconds before a gh call is killed")

    @field_validator("exclude_owners", mode="before")
    @classmethod
    def _coerce_owners(cls, value):
        if value is None:
            return set()
        if isinstance(value, str):
            return {value}
        return value

    @classmethod
    def from_mapping(cls, config: dict | None) -> "PipelineConfig":
        """Build from the ``pipeline`` section of a loaded config file."""
        section = (config or {}).get("pipeline") or {}
        return cls.model_validate(section)


def load_config(config_path: Path | str) -> dict:
    """Load configuration from a YAML file.

    Raises ``yaml.YAMLError`` on malformed YAML and ``ValueError`` when the
    document is not a mapping.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    data = yaml.safe_load(config_path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top level of {config_path} must be a mapping, got {type(data).__name__}")
    return data
