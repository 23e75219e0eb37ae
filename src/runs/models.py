"""Shared data models for workflow-run aggregation."""

from dataclasses import dataclass, field
from enum import Enum


class RunStatus(str, Enum):
    """Lifecycle status of a workflow run."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value) -> "RunStatus":
        """Map a raw status string onto a known status, else UNKNOWN."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


ACTIVE_STATUSES = (RunStatus.IN_PROGRESS, RunStatus.QUEUED)

STATUS_SYMBOLS = {
    "in_progress": "●",
    "queued": "○",
    "completed": "✓",
    "success": "✓",
    "failure": "✗",
    "cancelled": "⊘",
    "skipped": "⊝",
}


class FetchCategory(str, Enum):
    """The two independent query categories."""

    ACTIVE = "active"
    RECENT = "recent"


@dataclass(frozen=True)
class Repository:
    """A repository queried for workflow runs."""
    full_name: str
    owner: str
    last_activity: str = ""
    private: bool = False
    archived: bool = False


@dataclass(frozen=True)
class WorkflowRun:
    """One execution record of a workflow."""
    id: str
    name: str
    status: RunStatus = RunStatus.UNKNOWN
    conclusion: str = ""
    created_at: str = ""
    repository: str = ""
    branch: str = ""
    commit_sha: str = ""
    workflow_url: str = ""
    workflow_name: str = ""
    updated_at: str = ""
    duration_seconds: int | None = None

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def outcome(self) -> str:
        """Conclusion for completed runs, status otherwise."""
        if self.status == RunStatus.COMPLETED and self.conclusion:
            return self.conclusion
        return self.status.value

    @property
    def status_symbol(self) -> str:
        return STATUS_SYMBOLS.get(self.outcome, "?")

    @property
    def display_name(self) -> str:
        return self.workflow_name or self.name

    @property
    def branch_info(self) -> str:
        """Branch name with the abbreviated commit, e.g. ``main (1a2b3c4)``."""
        branch = self.branch or "unknown"
        if self.commit_sha:
            return f"{branch} ({self.commit_sha[:7]})"
        return branch

    @property
    def duration_string(self) -> str:
        if self.duration_seconds is None:
            return "-"

        hours, rest = divmod(self.duration_seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    def to_dict(self) -> dict:
        """Convert the run to a plain dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "conclusion": self.conclusion,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "repository": self.repository,
            "branch": self.branch,
            "commit_sha": self.commit_sha,
            "workflow_url": self.workflow_url,
            "workflow_name": self.workflow_name,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class FetchOutcome:
    """Result of fetching one category of runs from one repository."""
    source: Repository
    category: FetchCategory
    runs: list[WorkflowRun] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Snapshot:
    """Cumulative progress report emitted while a session is running."""
    active: tuple[WorkflowRun, ...]
    recent: tuple[WorkflowRun, ...]
    loading: bool

    def to_dict(self) -> dict:
        return {
            "active": [r.to_dict() for r in self.active],
            "recent": [r.to_dict() for r in self.recent],
            "loading": self.loading,
        }


@dataclass(frozen=True)
class AggregateResult:
    """Final merged view delivered by the terminal callback."""
    active: tuple[WorkflowRun, ...]
    recent: tuple[WorkflowRun, ...]

    def to_dict(self) -> dict:
        return {
            "active": [r.to_dict() for r in self.active],
            "recent": [r.to_dict() for r in self.recent],
        }
