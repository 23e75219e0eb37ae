"""Tests for the streaming aggregator."""

import asyncio

from src.config import PipelineConfig
from src.engine.aggregator import StreamingAggregator
from src.runs.models import RunStatus

from conftest import FakeRunner, make_repo, make_run


class Recorder:
    """Collects callbacks from one aggregation session."""

    def __init__(self):
        self.snapshots = []
        self.completions = []

    def on_progress(self, snapshot):
        self.snapshots.append(snapshot)

    def on_complete(self, result, error):
        self.completions.append((result, error))


def _aggregate(runner, config=None, exclusion_set=None):
    recorder = Recorder()
    aggregator = StreamingAggregator(config or PipelineConfig(), runner=runner)
    returned = asyncio.run(aggregator.aggregate(
        on_progress=recorder.on_progress,
        on_complete=recorder.on_complete,
        exclusion_set=exclusion_set,
    ))
    assert len(recorder.completions) == 1
    assert recorder.completions[0] == returned
    return recorder


def test_two_source_scenario(two_source_runner):
    recorder = _aggregate(two_source_runner)
    result, error = recorder.completions[0]

    assert error is None
    assert [(r.repository, r.id) for r in result.active] == [("acme/a", "2")]
    assert result.active[0].status == RunStatus.IN_PROGRESS
    assert [(r.repository, r.id) for r in result.recent] == [("acme/b", "3"), ("acme/a", "1")]
    assert [r.conclusion for r in result.recent] == ["failure", "success"]


def test_source_list_failure_is_terminal():
    runner = FakeRunner(repo_failure="Not logged into GitHub CLI. Run 'gh auth login' first.")
    recorder = _aggregate(runner)
    result, error = recorder.completions[0]

    assert result is None
    assert error.startswith("Failed to fetch repositories:")
    assert "gh auth login" in error
    assert recorder.snapshots == []
    assert runner.run_list_calls == []


def test_one_failing_recent_source_keeps_partial_data(five_source_runner):
    five_source_runner.failures[("acme/r2", "recent")] = "HTTP 502 bad gateway"
    recorder = _aggregate(five_source_runner)
    result, error = recorder.completions[0]

    assert result is not None
    assert {r.repository for r in result.recent} == {"acme/r0", "acme/r1", "acme/r3", "acme/r4"}
    assert len(result.recent) == 8
    assert "acme/r2" in error
    assert "HTTP 502" in error


def test_snapshots_are_cumulative(five_source_runner):
    five_source_runner.runs["acme/r1"].append(make_run(99, status="in_progress"))
    five_source_runner.runs["acme/r3"].append(make_run(98, status="queued"))
    recorder = _aggregate(five_source_runner)

    # One snapshot per source per category.
    assert len(recorder.snapshots) == 10
    for earlier, later in zip(recorder.snapshots, recorder.snapshots[1:]):
        assert set(earlier.active) <= set(later.active)
        assert set(earlier.recent) <= set(later.recent)

    assert all(s.loading for s in recorder.snapshots[:-1])
    assert not recorder.snapshots[-1].loading


def test_final_recent_sorted_and_capped(five_source_runner):
    recorder = _aggregate(five_source_runner, PipelineConfig(max_recent=4))
    result, _ = recorder.completions[0]

    timestamps = [r.created_at for r in result.recent]
    assert len(result.recent) == 4
    assert timestamps == sorted(timestamps, reverse=True)
    assert timestamps[0] == "2024-05-05T11:00:00Z"


def test_active_runs_are_not_truncated():
    repos = [make_repo(f"acme/r{i}") for i in range(6)]
    runs = {
        r["full_name"]: [
            make_run(1, status="in_progress", created_at="2024-01-01T00:00:00Z"),
            make_run(2, status="queued", created_at="2024-01-02T00:00:00Z"),
        ]
        for r in repos
    }
    recorder = _aggregate(FakeRunner(repos=repos, runs=runs), PipelineConfig(max_recent=1))
    result, error = recorder.completions[0]

    assert error is None
    assert len(result.active) == 12
    assert result.recent == ()


def test_concurrency_cap_is_respected():
    repos = [make_repo(f"acme/r{i}") for i in range(15)]
    runner = FakeRunner(repos=repos, delay=lambda args: 0.01 if args[0] == "run" else 0)
    recorder = _aggregate(runner, PipelineConfig(concurrency=3))

    # Each category keeps at most three gh processes running.
    assert runner.peak_in_flight <= 6
    assert len(recorder.snapshots) == 30
    recent_calls = [c for c in runner.run_list_calls if "--status" not in c]
    assert [c[c.index("--repo") + 1] for c in recent_calls] == [r["full_name"] for r in repos]


def test_no_sources():
    recorder = _aggregate(FakeRunner(repos=[]))
    result, error = recorder.completions[0]

    assert error is None
    assert result.active == ()
    assert result.recent == ()
    assert recorder.snapshots == []


def test_every_source_failing_reports_error_only():
    runner = FakeRunner(
        repos=[make_repo("acme/a")],
        failures={("acme/a", "in_progress"): "boom", ("acme/a", "recent"): "bang"},
    )
    result, error = _aggregate(runner).completions[0]

    assert result is None
    assert "acme/a: boom" in error
    assert "acme/a: bang" in error


def test_exclusion_set_filters_before_fetching(two_source_runner):
    recorder = _aggregate(two_source_runner, exclusion_set={"acme"})
    result, error = recorder.completions[0]

    assert error is None
    assert result.recent == ()
    assert two_source_runner.run_list_calls == []


def test_failing_progress_callback_does_not_break_session(two_source_runner):
    completions = []

    def explode(snapshot):
        raise RuntimeError("renderer went away")

    aggregator = StreamingAggregator(PipelineConfig(), runner=two_source_runner)
    asyncio.run(aggregator.aggregate(
        on_progress=explode,
        on_complete=lambda result, error: completions.append((result, error)),
    ))

    assert len(completions) == 1
    assert completions[0][1] is None


def test_sessions_are_independent(two_source_runner):
    aggregator = StreamingAggregator(PipelineConfig(), runner=two_source_runner)

    async def twice():
        return await asyncio.gather(aggregator.aggregate(), aggregator.aggregate())

    (first, _), (second, _) = asyncio.run(twice())
    assert first.recent == second.recent
    assert first.active == second.active


def test_deeply_nested_response_fails_only_that_source(two_source_runner):
    class NestedRunner(FakeRunner):
        def _respond(self, args):
            result = super()._respond(args)
            if args[0] != "api" and "--status" not in args and "acme/b" in args:
                result.stdout = b"[" * 200000 + b"]" * 200000
            return result

    runner = NestedRunner(repos=two_source_runner.repos, runs=two_source_runner.runs)
    recorder = _aggregate(runner)
    result, error = recorder.completions[0]

    assert result is not None
    assert [r.id for r in result.recent] == ["1"]
    assert "acme/b" in error
    assert not recorder.snapshots[-1].loading


def test_unexpected_runner_exception_still_completes_once(two_source_runner):
    class BrokenRunner(FakeRunner):
        def _respond(self, args):
            if args[0] != "api" and "acme/a" in args and "--status" not in args:
                raise RuntimeError("runner exploded")
            return super()._respond(args)

    runner = BrokenRunner(repos=two_source_runner.repos, runs=two_source_runner.runs)
    recorder = _aggregate(runner)
    result, error = recorder.completions[0]

    assert result is not None
    assert [r.id for r in result.active] == ["2"]
    assert [r.id for r in result.recent] == ["3"]
    assert "acme/a: RuntimeError: runner exploded" in error
