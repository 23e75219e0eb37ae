"""Shared test fixtures."""

import asyncio
import json

import pytest

from src.config import PipelineConfig
from src.runner.process import ProcessResult, ProcessRunner


def make_repo(full_name, pushed_at="2024-05-01T00:00:00Z", archived=False, updated_at=None):
    """A `/user/repos` entry as returned by `gh api`."""
    owner, name = full_name.split("/")
    return {
        "name": name,
        "full_name": full_name,
        "owner": {"login": owner},
        "pushed_at": pushed_at,
        "updated_at": updated_at or pushed_at,
        "private": False,
        "archived": archived,
    }


def make_run(run_id, name="CI", status="completed", conclusion="success",
             created_at="2024-05-01T10:00:00Z", updated_at=None):
    """A `gh run list --json` record."""
    return {
        "databaseId": run_id,
        "name": name,
        "workflowName": name,
        "status": status,
        "conclusion": conclusion if status == "completed" else "",
        "createdAt": created_at,
        "updatedAt": updated_at or created_at,
        "headBranch": "main",
        "headSha": "0123456789abcdef",
        "url": f"https://github.com/example/runs/{run_id}",
    }


class FakeRunner(ProcessRunner):
    """Serves canned `gh` responses and records how it was called.

    ``runs`` maps a repository full name to its run records; queries with
    ``--status`` only see records with that status. ``failures`` maps
    ``(repo, kind)`` to stderr, where kind is a status or ``"recent"``.
    """

    def __init__(self, repos=None, runs=None, failures=None, repo_failure=None, delay=0.0):
        super().__init__(timeout=None)
        self.repos = repos or []
        self.runs = runs or {}
        self.failures = failures or {}
        self.repo_failure = repo_failure
        self.delay = delay
        self.calls: list[list[str]] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def run(self, command, args):
        self.calls.append(list(args))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            delay = self.delay(args) if callable(self.delay) else self.delay
            await asyncio.sleep(delay)
            return self._respond(args)
        finally:
            self.in_flight -= 1

    @property
    def run_list_calls(self):
        return [c for c in self.calls if c[:2] == ["run", "list"]]

    def _respond(self, args):
        if args[0] == "api":
            if self.repo_failure:
                return ProcessResult(exit_code=1, stdout=b"", stderr=self.repo_failure)
            return ProcessResult(exit_code=0, stdout=json.dumps(self.repos).encode(), stderr="")

        repo = args[args.index("--repo") + 1]
        status = args[args.index("--status") + 1] if "--status" in args else None
        limit = int(args[args.index("--limit") + 1])

        stderr = self.failures.get((repo, status or "recent"))
        if stderr is not None:
            return ProcessResult(exit_code=1, stdout=b"", stderr=stderr)

        records = self.runs.get(repo, [])
        if status:
            records = [r for r in records if r.get("status") == status]
        return ProcessResult(exit_code=0, stdout=json.dumps(records[:limit]).encode(), stderr="")


@pytest.fixture
def config():
    """Default engine configuration."""
    return PipelineConfig()


@pytest.fixture
def two_source_runner():
    """Repository A has a finished and a running run; B has one failed run."""
    return FakeRunner(
        repos=[
            make_repo("acme/a", pushed_at="2024-05-02T00:00:00Z"),
            make_repo("acme/b", pushed_at="2024-05-01T00:00:00Z"),
        ],
        runs={
            "acme/a": [
                make_run(1, "Build", conclusion="success", created_at="2024-05-01T10:00:00Z"),
                make_run(2, "Deploy", status="in_progress", created_at="2024-05-01T12:00:00Z"),
            ],
            "acme/b": [
                make_run(3, "Test", conclusion="failure", created_at="2024-05-01T11:00:00Z"),
            ],
        },
    )


@pytest.fixture
def five_source_runner():
    """Five repositories with two finished runs each."""
    repos = [make_repo(f"acme/r{i}", pushed_at=f"2024-05-0{9 - i}T00:00:00Z") for i in range(5)]
    runs = {
        repo["full_name"]: [
            make_run(i * 10 + 1, created_at=f"2024-05-0{i + 1}T10:00:00Z"),
            make_run(i * 10 + 2, conclusion="failure", created_at=f"2024-05-0{i + 1}T11:00:00Z"),
        ]
        for i, repo in enumerate(repos)
    }
    return FakeRunner(repos=repos, runs=runs)
