"""Concurrent aggregation engine."""

from .aggregator import StreamingAggregator
from .fetchers import RunFetcher
from .scheduler import BoundedFetchScheduler
from .session import AggregationSession

__all__ = ["AggregationSession", "BoundedFetchScheduler", "RunFetcher", "StreamingAggregator"]
