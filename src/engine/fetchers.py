"""Per-repository workflow-run queries."""

import logging

from ..config import PipelineConfig
from ..runner.process import ProcessRunner
from ..runs.errors import PipelineError
from ..runs.models import FetchCategory, FetchOutcome, Repository, RunStatus, WorkflowRun
from ..runs.parser import parse_runs

logger = logging.getLogger(__name__)

RUN_FIELDS = ",".join([
    "databaseId",
    "name",
    "status",
    "conclusion",
    "createdAt",
    "updatedAt",
    "headBranch",
    "headSha",
    "url",
    "workflowName",
])


class RunFetcher:
    """Issues the `gh run list` queries for one repository at a time."""

    def __init__(self, runner: ProcessRunner, config: PipelineConfig):
        self.runner = runner
        self.config = config

    def _run_list_args(self, repo: Repository, limit: int, status: RunStatus | None = None) -> list[str]:
        args = ["run", "list", "--repo", repo.full_name]
        if status is not None:
            args.extend(["--status", status.value])
        args.extend(["--json", RUN_FIELDS, "--limit", str(limit)])
        return args

    async def _list_runs(
        self, repo: Repository, limit: int, status: RunStatus | None = None
    ) -> list[WorkflowRun]:
        stdout = await self.runner.run_checked(
            self.config.gh_command, self._run_list_args(repo, limit, status)
        )
        return parse_runs(stdout, repository=repo.full_name)

    async def fetch_active(self, repo: Repository) -> FetchOutcome:
        """Collect in-progress and queued runs for *repo*."""
        runs: list[WorkflowRun] = []
        seen: set[str] = set()

        try:
            for status in (RunStatus.IN_PROGRESS, RunStatus.QUEUED):
                for run in await self._list_runs(repo, self.config.active_limit, status):
                    if run.id in seen:
                        continue
                    seen.add(run.id)
                    runs.append(run)
        except PipelineError as e:
            return self._failed(repo, FetchCategory.ACTIVE, e)

        return FetchOutcome(source=repo, category=FetchCategory.ACTIVE, runs=runs)

    async def fetch_recent(self, repo: Repository) -> FetchOutcome:
        """Collect the latest finished runs for *repo*."""
        try:
            runs = await self._list_runs(repo, self.config.recent_limit)
        except PipelineError as e:
            return self._failed(repo, FetchCategory.RECENT, e)

        return FetchOutcome(
            source=repo,
            category=FetchCategory.RECENT,
            runs=[r for r in runs if not r.is_active()],
        )

    @staticmethod
    def _failed(repo: Repository, category: FetchCategory, error: Exception) -> FetchOutcome:
        logger.warning("%s fetch failed for %s: %s", category.value, repo.full_name, error)
        return FetchOutcome(
            source=repo,
            category=category,
            error=f"{repo.full_name}: {error}",
        )
