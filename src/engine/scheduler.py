"""Bounded-concurrency fan-out over repositories."""

import asyncio
import logging
from typing import Awaitable, Callable

from ..runs.models import FetchCategory, FetchOutcome, Repository

logger = logging.getLogger(__name__)

Fetch = Callable[[Repository], Awaitable[FetchOutcome]]
OutcomeHandler = Callable[[FetchOutcome], None]


class BoundedFetchScheduler:
    """Runs one fetch per source with at most ``concurrency`` in flight.

    A fixed pool of workers pulls sources from a shared iterator, so a
    freed slot always takes the next unstarted source in list order.
    ``fetch`` reports expected failures inside the FetchOutcome. Anything
    else it raises becomes an error outcome for that source, so every
    source completes exactly once.
    """

    def __init__(self, concurrency: int = 10):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.in_flight = 0
        self.peak_in_flight = 0
        self.completed = 0

    async def run(
        self,
        sources: list[Repository],
        fetch: Fetch,
        on_outcome: OutcomeHandler,
        category: FetchCategory,
    ) -> int:
        """Fetch every source and hand each outcome to *on_outcome*.

        Returns the number of completed sources.
        """
        pending = iter(sources)

        async def worker() -> None:
            for source in pending:
                self.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
                try:
                    outcome = await fetch(source)
                except Exception as e:
                    logger.exception("Unexpected %s fetch error for %s", category.value, source.full_name)
                    outcome = FetchOutcome(
                        source=source,
                        category=category,
                        error=f"{source.full_name}: {type(e).__name__}: {e}",
                    )
                finally:
                    self.in_flight -= 1
                self.completed += 1
                on_outcome(outcome)

        workers = min(self.concurrency, len(sources))
        if workers:
            await asyncio.gather(*(worker() for _ in range(workers)))

        logger.debug(
            "Completed %d/%d %s sources (peak in flight: %d)",
            self.completed, len(sources), category.value, self.peak_in_flight,
        )
        return self.completed
