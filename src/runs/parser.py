"""Normalize `gh run list` JSON output into WorkflowRun values."""

import json
from datetime import datetime
from typing import Any

from .errors import MalformedResponse
from .models import RunStatus, WorkflowRun

# Accepted spellings per attribute, tried in order. The first present,
# non-empty value wins.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("databaseId", "id"),
    "name": ("name", "workflowName"),
    "workflow_name": ("workflowName", "name"),
    "created_at": ("createdAt", "created_at"),
    "updated_at": ("updatedAt", "updated_at"),
    "branch": ("headBranch", "head_branch"),
    "commit_sha": ("headSha", "head_sha"),
    "workflow_url": ("url", "htmlUrl", "html_url"),
}


def _resolve(record: dict, attribute: str) -> str:
    """Return the first non-empty alias value for *attribute* as a string."""
    for key in FIELD_ALIASES[attribute]:
        value = record.get(key)
        if value is not None and value != "":
            return str(value)
    return ""


def _resolve_repository(record: dict) -> str:
    repo = record.get("repository")
    if isinstance(repo, dict):
        return str(repo.get("full_name") or repo.get("name") or "")
    if repo:
        return str(repo)
    return ""


def _parse_timestamp(value: str) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def compute_duration(created_at: str, updated_at: str) -> int | None:
    """Elapsed seconds between two ISO-8601 timestamps, or None if unknown."""
    start = _parse_timestamp(created_at)
    end = _parse_timestamp(updated_at)
    if start is None or end is None:
        return None
    try:
        delta = (end - start).total_seconds()
    except TypeError:
        # naive and aware timestamps mixed
        return None
    return max(0, int(delta))


def parse_run(record: Any, repository: str | None = None) -> WorkflowRun | None:
    """Build a WorkflowRun from one record, or None if the record is invalid."""
    if not isinstance(record, dict):
        return None

    run_id = _resolve(record, "id")
    name = _resolve(record, "name")
    if not run_id or not name:
        return None

    created_at = _resolve(record, "created_at")
    updated_at = _resolve(record, "updated_at")

    return WorkflowRun(
        id=run_id,
        name=name,
        status=RunStatus.from_value(record.get("status") or "unknown"),
        conclusion=str(record.get("conclusion") or ""),
        created_at=created_at,
        updated_at=updated_at,
        repository=repository if repository is not None else _resolve_repository(record),
        branch=_resolve(record, "branch"),
        commit_sha=_resolve(record, "commit_sha"),
        workflow_url=_resolve(record, "workflow_url"),
        workflow_name=_resolve(record, "workflow_name"),
        duration_seconds=compute_duration(created_at, updated_at),
    )


def parse_runs(raw: str | bytes | None, repository: str | None = None) -> list[WorkflowRun]:
    """Parse a raw JSON response into runs.

    An empty response is an empty list. Anything that is not a JSON array
    raises MalformedResponse. Records without an id or a name are dropped.
    When *repository* is given it overrides whatever the records carry.
    """
    if raw is None:
        return []
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw.strip():
        return []

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, RecursionError) as e:
        raise MalformedResponse(f"Failed to parse JSON response from GitHub CLI: {e}") from e

    if not isinstance(data, list):
        raise MalformedResponse("Invalid response format from GitHub CLI")

    runs = []
    for record in data:
        run = parse_run(record, repository=repository)
        if run is not None:
            runs.append(run)
    return runs
