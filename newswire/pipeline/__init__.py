"""Pipeline orchestration - aggregation, scheduled refresh and bootstrap."""

from .dedup import Deduplicator
from .aggregator import NewsAggregator, AggregationSummary
from .scheduler import RefreshScheduler, SchedulerState
from .bootstrap import BootstrapInitializer

__all__ = [
    "Deduplicator", "NewsAggregator", "AggregationSummary",
    "RefreshScheduler", "SchedulerState", "BootstrapInitializer",
]
