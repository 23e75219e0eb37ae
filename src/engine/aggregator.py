"""Streaming aggregation of workflow runs across repositories.

Usage::

    aggregator = StreamingAggregator(PipelineConfig())
    result, error = await aggregator.aggregate(
        on_progress=lambda snapshot: ...,
        on_complete=lambda result, error: ...,
    )

``on_progress`` receives a cumulative Snapshot after every single-source
completion in either category. ``on_complete`` fires exactly once, with
``(None, error)`` when nothing could be fetched and ``(result, error)``
otherwise, where ``error`` summarizes per-source failures (or is None).
"""

import asyncio
import logging
from typing import Callable, Iterable

from ..config import PipelineConfig
from ..runner.process import ProcessRunner
from ..runs.errors import SourceListUnavailable
from ..runs.models import AggregateResult, FetchCategory, FetchOutcome, Repository, Snapshot
from ..sources.lister import SourceLister
from .fetchers import RunFetcher
from .scheduler import BoundedFetchScheduler
from .session import AggregationSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Snapshot], None]
CompleteCallback = Callable[[AggregateResult | None, str | None], None]


class StreamingAggregator:
    """Collects active and recent runs from every selected repository."""

    def __init__(self, config: PipelineConfig, runner: ProcessRunner | None = None):
        self.config = config
        self.runner = runner

    def _make_runner(self) -> ProcessRunner:
        # A fresh runner per request so the executable lookup runs once per request.
        return self.runner or ProcessRunner(timeout=self.config.process_timeout)

    async def list_sources(self, exclusion_set: Iterable[str] | None = None) -> list[Repository]:
        """Return the repositories an aggregation would query."""
        lister = SourceLister(self._make_runner(), self.config)
        return await lister.list_sources(exclusion_set)

    async def aggregate(
        self,
        on_progress: ProgressCallback | None = None,
        on_complete: CompleteCallback | None = None,
        exclusion_set: Iterable[str] | None = None,
    ) -> tuple[AggregateResult | None, str | None]:
        """Run one aggregation session to completion."""
        runner = self._make_runner()
        lister = SourceLister(runner, self.config)

        try:
            sources = await lister.list_sources(exclusion_set)
        except SourceListUnavailable as e:
            error = f"Failed to fetch repositories: {e}"
            logger.error(error)
            return self._complete(on_complete, None, error)

        session = AggregationSession(sources_total=len(sources))
        logger.info("Aggregating workflow runs from %d repositories", len(sources))

        if not sources:
            session.done = True
            return self._complete(on_complete, AggregateResult(active=(), recent=()), None)

        def handle(outcome: FetchOutcome) -> None:
            session.record(outcome)
            logger.debug(
                "%s %s: %d runs%s (%d/%d)",
                outcome.category.value,
                outcome.source.full_name,
                len(outcome.runs),
                " [failed]" if outcome.error else "",
                session.completed[outcome.category],
                session.sources_total,
            )
            self._publish(on_progress, session.snapshot())

        fetcher = RunFetcher(runner, self.config)
        await asyncio.gather(
            BoundedFetchScheduler(self.config.concurrency).run(
                sources, fetcher.fetch_active, handle, FetchCategory.ACTIVE
            ),
            BoundedFetchScheduler(self.config.concurrency).run(
                sources, fetcher.fetch_recent, handle, FetchCategory.RECENT
            ),
        )

        result = session.finalize(self.config.max_recent)
        error = session.error_message
        logger.info(
            "Aggregation finished: %d active, %d recent, %d errors",
            len(result.active), len(result.recent), len(session.errors),
        )

        if error and session.succeeded == 0:
            return self._complete(on_complete, None, error)
        return self._complete(on_complete, result, error)

    @staticmethod
    def _publish(on_progress: ProgressCallback | None, snapshot: Snapshot) -> None:
        if on_progress is None:
            return
        try:
            on_progress(snapshot)
        except Exception:
            logger.exception("Progress callback failed")

    @staticmethod
    def _complete(
        on_complete: CompleteCallback | None,
        result: AggregateResult | None,
        error: str | None,
    ) -> tuple[AggregateResult | None, str | None]:
        if on_complete is not None:
            on_complete(result, error)
        return result, error
