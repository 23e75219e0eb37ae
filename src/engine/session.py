"""Live state of one aggregation request."""

from dataclasses import dataclass, field

from ..runs.models import AggregateResult, FetchCategory, FetchOutcome, Snapshot, WorkflowRun


@dataclass
class AggregationSession:
    """Accumulates fetch outcomes for both categories.

    Mutated only from the event loop that runs the aggregation, so no
    locking is needed. Run collections only ever grow until finalize().
    """

    sources_total: int = 0
    active_runs: list[WorkflowRun] = field(default_factory=list)
    recent_runs: list[WorkflowRun] = field(default_factory=list)
    completed: dict[FetchCategory, int] = field(
        default_factory=lambda: {c: 0 for c in FetchCategory}
    )
    succeeded: int = 0
    errors: list[str] = field(default_factory=list)
    done: bool = False
    _seen: dict[FetchCategory, set[tuple[str, str]]] = field(
        default_factory=lambda: {c: set() for c in FetchCategory},
        init=False,
        repr=False,
    )

    def _runs_for(self, category: FetchCategory) -> list[WorkflowRun]:
        if category == FetchCategory.ACTIVE:
            return self.active_runs
        return self.recent_runs

    def record(self, outcome: FetchOutcome) -> None:
        """Fold one source's outcome into the session."""
        if self.done:
            raise RuntimeError("session already finalized")
        if self.completed[outcome.category] >= self.sources_total:
            raise RuntimeError(f"too many completions for {outcome.category.value}")

        self.completed[outcome.category] += 1

        if outcome.error is not None:
            self.errors.append(outcome.error)
            return

        self.succeeded += 1
        runs = self._runs_for(outcome.category)
        seen = self._seen[outcome.category]
        for run in outcome.runs:
            key = (run.repository, run.id)
            if key in seen:
                continue
            seen.add(key)
            runs.append(run)

    def is_complete(self, category: FetchCategory | None = None) -> bool:
        if category is not None:
            return self.completed[category] >= self.sources_total
        return all(self.is_complete(c) for c in FetchCategory)

    @property
    def loading(self) -> bool:
        return not self.is_complete()

    def snapshot(self) -> Snapshot:
        return Snapshot(
            active=tuple(self.active_runs),
            recent=tuple(self.recent_runs),
            loading=self.loading,
        )

    def finalize(self, max_recent: int) -> AggregateResult:
        """Sort and cap the recent runs; active runs keep arrival order."""
        if self.done:
            raise RuntimeError("session already finalized")
        self.done = True

        # Lexical order on created_at; correct while all timestamps share one format.
        self.recent_runs.sort(key=lambda r: r.created_at, reverse=True)
        del self.recent_runs[max_recent:]

        return AggregateResult(
            active=tuple(self.active_runs),
            recent=tuple(self.recent_runs),
        )

    @property
    def error_message(self) -> str | None:
        if not self.errors:
            return None
        return "; ".join(self.errors)
