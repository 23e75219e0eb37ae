"""Workflow-run data models and parsing."""

from .errors import MalformedResponse, PipelineError, SourceListUnavailable, TransportFailure
from .models import (
    AggregateResult,
    FetchCategory,
    FetchOutcome,
    Repository,
    RunStatus,
    Snapshot,
    WorkflowRun,
)
from .parser import parse_runs

__all__ = [
    "AggregateResult",
    "FetchCategory",
    "FetchOutcome",
    "MalformedResponse",
    "PipelineError",
    "Repository",
    "RunStatus",
    "Snapshot",
    "SourceListUnavailable",
    "TransportFailure",
    "WorkflowRun",
    "parse_runs",
]
