"""Repository discovery through the GitHub CLI."""

import json
import logging
from typing import Iterable

from ..config import PipelineConfig
from ..runner.process import ProcessRunner
from ..runs.errors import PipelineError, SourceListUnavailable
from ..runs.models import Repository

logger = logging.getLogger(__name__)


def _latest(*timestamps: str | None) -> str:
    """Most recent of the given ISO-8601 UTC timestamps, or ``""``."""
    values = [t for t in timestamps if isinstance(t, str) and t]
    return max(values) if values else ""


class SourceLister:
    """Lists the repositories whose workflow runs should be collected."""

    def __init__(self, runner: ProcessRunner, config: PipelineConfig):
        self.runner = runner
        self.config = config

    def _api_path(self) -> str:
        return (
            f"/user/repos?per_page={self.config.repo_page_size}"
            "&type=all&sort=pushed&direction=desc"
        )

    def _should_include(self, repo: Repository, exclusion_set: set[str]) -> bool:
        """Check if repository should be included based on filters."""
        if repo.owner in exclusion_set:
            return False
        if repo.archived and not self.config.include_archived:
            return False
        return True

    @staticmethod
    def _to_repository(item: dict) -> Repository | None:
        """Convert one ``/user/repos`` entry to a Repository."""
        if not isinstance(item, dict):
            return None

        full_name = item.get("full_name") or ""
        owner = item.get("owner") or {}
        login = owner.get("login", "") if isinstance(owner, dict) else str(owner)
        if not login and "/" in full_name:
            login = full_name.split("/")[0]
        if not full_name:
            name = item.get("name")
            if not name or not login:
                return None
            full_name = f"{login}/{name}"

        return Repository(
            full_name=full_name,
            owner=login,
            last_activity=_latest(item.get("pushed_at"), item.get("updated_at")),
            private=bool(item.get("private", False)),
            archived=bool(item.get("archived", False)),
        )

    async def list_sources(self, exclusion_set: Iterable[str] | None = None) -> list[Repository]:
        """Fetch, filter, order and cap the candidate repositories."""
        excluded = set(self.config.exclude_owners if exclusion_set is None else exclusion_set)

        try:
            stdout = await self.runner.run_checked(
                self.config.gh_command, ["api", self._api_path()]
            )
        except PipelineError as e:
            raise SourceListUnavailable(str(e)) from e

        try:
            data = json.loads(stdout) if stdout.strip() else []
        except (json.JSONDecodeError, RecursionError) as e:
            raise SourceListUnavailable("Failed to parse repositories list") from e
        if not isinstance(data, list):
            raise SourceListUnavailable("Failed to parse repositories list")

        repos = []
        for item in data:
            repo = self._to_repository(item)
            if repo is None or not self._should_include(repo, excluded):
                continue
            repos.append(repo)

        # Stable, so ties keep the server's order.
        repos.sort(key=lambda r: r.last_activity, reverse=True)

        selected = repos[: self.config.max_sources]
        logger.info(
            "Discovered %d repositories (%d after filters, %d selected)",
            len(data), len(repos), len(selected),
        )
        return selected
