"""Periodic catalog refresh with a single-flight guard."""

import asyncio
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config.settings import Settings, settings as default_settings
from ..config.sources import SourceRegistry
from ..ingestion.interfaces import utcnow
from ..storage.interfaces import CatalogStoreInterface
from .aggregator import NewsAggregator

logger = structlog.get_logger()

REFRESH_JOB_ID = "refresh_catalog"
STATS_JOB_ID = "log_refresh_stats"


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class RefreshScheduler:
    """Runs the aggregator on an interval and merges results into the catalog.

    ``tick`` is skipped while a refresh is in flight. ``force_run`` ignores
    that guard and replaces the catalog, but only with a non-empty batch.
    """

    def __init__(
        self,
        aggregator: NewsAggregator,
        store: CatalogStoreInterface,
        registry: SourceRegistry = None,
        config: Settings = None,
        scheduler: AsyncIOScheduler = None,
    ):
        self.aggregator = aggregator
        self.store = store
        self.registry = registry
        self.config = config or default_settings
        self.scheduler = scheduler
        self._lock = asyncio.Lock()
        self._in_flight = 0

        self.total_updates = 0
        self.successful_updates = 0
        self.failed_updates = 0
        self.skipped_updates = 0
        self.total_articles_fetched = 0
        self.last_update: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self._in_flight else SchedulerState.IDLE

    async def tick(self) -> Optional[int]:
        """Aggregate and merge-insert. Returns None when a refresh is already running."""
        async with self._lock:
            if self._in_flight:
                self.skipped_updates += 1
                logger.info("refresh_skipped", reason="already_running")
                return None
            self._in_flight += 1
        try:
            return await self._run(replace=False)
        finally:
            await self._release()

    async def force_run(self) -> int:
        """Aggregate and replace the catalog if the batch is non-empty."""
        async with self._lock:
            self._in_flight += 1
        try:
            return await self._run(replace=True)
        finally:
            await self._release()

    async def _release(self) -> None:
        async with self._lock:
            self._in_flight -= 1
        self._mark_scheduled()

    async def _run(self, replace: bool) -> int:
        self.total_updates += 1
        mode = "replace" if replace else "merge"
        logger.info("refresh_started", mode=mode)
        try:
            articles = await self.aggregator.aggregate()
        except Exception as e:
            self.failed_updates += 1
            self.last_error = str(e)
            logger.exception("refresh_failed", mode=mode)
            return 0

        self.total_articles_fetched += len(articles)
        self.last_update = utcnow()

        if not articles:
            self.failed_updates += 1
            self.last_error = "aggregation returned no articles"
            logger.warning("refresh_empty", mode=mode, catalog_size=self.store.count())
            return 0

        if replace:
            stored = self.store.replace_articles(articles)
        else:
            stored = self.store.add_articles(articles)

        self.successful_updates += 1
        self.last_error = None
        logger.info(
            "refresh_completed",
            mode=mode,
            fetched=len(articles),
            stored=stored,
            catalog_size=self.store.count(),
        )
        return stored

    def start(self) -> None:
        """Schedule refresh jobs. Call from inside the running event loop."""
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler()

        first_run = datetime.now().astimezone() + timedelta(seconds=self.config.initial_delay_seconds)
        if self.config.force_refresh_on_start:
            self.scheduler.add_job(
                self.force_run,
                DateTrigger(run_date=first_run),
                id="force_refresh_on_start",
                name="Force catalog refresh",
                replace_existing=True,
            )
            first_run += timedelta(minutes=self.config.refresh_interval_minutes)

        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(minutes=self.config.refresh_interval_minutes),
            id=REFRESH_JOB_ID,
            name="Refresh news catalog",
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.add_job(
            self.log_stats,
            IntervalTrigger(minutes=self.config.stats_log_interval_minutes),
            id=STATS_JOB_ID,
            name="Log refresh stats",
            replace_existing=True,
        )

        if not self.scheduler.running:
            self.scheduler.start()
        self._mark_scheduled()
        logger.info(
            "refresh_scheduler_started",
            interval_minutes=self.config.refresh_interval_minutes,
            initial_delay_seconds=self.config.initial_delay_seconds,
        )

    def stop(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("refresh_scheduler_stopped")

    def next_run(self) -> Optional[datetime]:
        if self.scheduler is None:
            return None
        job = self.scheduler.get_job(REFRESH_JOB_ID)
        return job.next_run_time if job else None

    def _mark_scheduled(self) -> None:
        if self.registry is not None:
            self.registry.mark_scheduled(self.next_run())

    def log_stats(self) -> None:
        logger.info("refresh_stats", **self.stats())

    def stats(self) -> dict:
        next_run = self.next_run()
        summary = self.aggregator.last_summary
        return {
            "state": self.state.value,
            "total_updates": self.total_updates,
            "successful_updates": self.successful_updates,
            "failed_updates": self.failed_updates,
            "skipped_updates": self.skipped_updates,
            "total_articles_fetched": self.total_articles_fetched,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "next_update": next_run.isoformat() if next_run else None,
            "last_error": self.last_error,
            "last_aggregation": summary.to_dict() if summary else None,
        }
