"""Aggregation: concurrent fetch across sources, merge, dedup, sort."""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

import structlog

from ..config.settings import Settings, settings as default_settings
from ..config.sources import SourceRegistry
from ..ingestion.adapters import build_adapters
from ..ingestion.http import FeedHttpClient
from ..ingestion.interfaces import Article, FetchReport, SourceDescriptor, utcnow
from ..ingestion.resilience import ResilientFetcher
from .dedup import Deduplicator

logger = structlog.get_logger()


@dataclass
class AggregationSummary:
    """Outcome counts for one aggregation run."""
    started_at: datetime = field(default_factory=utcnow)
    sources: int = 0
    succeeded: int = 0
    failed: int = 0
    empty: int = 0
    rate_limited: int = 0
    proxied: int = 0
    fetched: int = 0
    unique: int = 0
    elapsed_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "sources": self.sources,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "empty": self.empty,
            "rate_limited": self.rate_limited,
            "proxied": self.proxied,
            "fetched": self.fetched,
            "unique": self.unique,
            "elapsed_ms": self.elapsed_ms,
        }


class NewsAggregator:
    """Fans out to every active source and returns one ranked batch.

    Without an injected ``fetcher`` each run opens its own HTTP session and
    reports per-source stats to the registry.
    """

    def __init__(
        self,
        registry: SourceRegistry = None,
        config: Settings = None,
        fetcher: ResilientFetcher = None,
    ):
        self.registry = registry
        self.config = config or default_settings
        self.fetcher = fetcher
        self.deduplicator = Deduplicator(self.config.near_duplicate_window_seconds)
        self.last_summary: Optional[AggregationSummary] = None

    async def aggregate(self, sources: Sequence[SourceDescriptor] = None) -> List[Article]:
        """Fetch, merge, dedup and sort. Partial failure is a normal outcome."""
        if sources is None:
            sources = self.registry.active() if self.registry else []
        sources = [s for s in sources if self._is_active(s)]

        summary = AggregationSummary(sources=len(sources))
        start_time = time.monotonic()

        if not sources:
            logger.warning("no_active_sources")
            self.last_summary = summary
            return []

        if self.fetcher is not None:
            reports = await self._fetch_all(self.fetcher, sources)
        else:
            on_fetch = self.registry.record_fetch if self.registry else None
            async with FeedHttpClient(self.config) as http:
                fetcher = ResilientFetcher(
                    build_adapters(http, config=self.config),
                    config=self.config,
                    on_fetch_complete=on_fetch,
                )
                reports = await self._fetch_all(fetcher, sources)

        # Source order, not completion order
        merged: List[Article] = []
        for report in reports:
            merged.extend(report.articles)
            if report.rate_limited:
                summary.rate_limited += 1
            if report.used_proxy:
                summary.proxied += 1
            if not report.succeeded:
                summary.failed += 1
            elif report.articles:
                summary.succeeded += 1
            else:
                summary.empty += 1

        unique = self.deduplicator.apply(merged)
        unique.sort(key=lambda a: a.published_at, reverse=True)

        summary.fetched = len(merged)
        summary.unique = len(unique)
        summary.elapsed_ms = int((time.monotonic() - start_time) * 1000)
        self.last_summary = summary

        logger.info("aggregation_complete", **summary.to_dict())
        return unique

    async def _fetch_all(
        self,
        fetcher: ResilientFetcher,
        sources: Sequence[SourceDescriptor],
    ) -> List[FetchReport]:
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_fetches))

        async def bounded(descriptor: SourceDescriptor) -> FetchReport:
            async with semaphore:
                return await fetcher.fetch(descriptor)

        results = await asyncio.gather(
            *(bounded(s) for s in sources), return_exceptions=True,
        )

        reports = []
        for descriptor, result in zip(sources, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("feed_fetch_exception", source=descriptor.id, error=str(result))
                result = FetchReport(source_id=descriptor.id, error=str(result))
            reports.append(result)
        return reports

    def _is_active(self, descriptor: SourceDescriptor) -> bool:
        if self.registry is not None:
            state = self.registry.state(descriptor.id)
            if state is not None:
                return state.active
        return descriptor.active
