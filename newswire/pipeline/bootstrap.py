"""First-start initialization: make sure the catalog is never empty."""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

import structlog

from ..config.settings import Settings, settings as default_settings
from ..config.sources import EMERGENCY_SOURCE, SEED_SOURCES
from ..ingestion.interfaces import (
    Article, Category, SourceDescriptor, SYNTHETIC_ID_PREFIX, utcnow,
)
from ..storage.interfaces import CatalogStoreInterface
from .aggregator import NewsAggregator

logger = structlog.get_logger()

PLACEHOLDER_URL = "https://newswire.invalid/fallback/{n}"
PLACEHOLDER_SOURCE_ID = "newswire"


class BootstrapInitializer:
    """Populates an empty catalog once: seeds, then one emergency feed, then placeholders.

    ``initialize`` is safe to call from many request handlers; only the first
    call starts work and every caller awaits the same task. It never raises.
    """

    def __init__(
        self,
        store: CatalogStoreInterface,
        aggregator: NewsAggregator,
        config: Settings = None,
        seeds: Sequence[SourceDescriptor] = None,
        emergency: SourceDescriptor = EMERGENCY_SOURCE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.aggregator = aggregator
        self.config = config or default_settings
        self.seeds = list(seeds) if seeds is not None else list(SEED_SOURCES)
        self.emergency = emergency
        self.clock = clock
        self.ready = asyncio.Event()
        self.outcome: Optional[str] = None  # seeded, emergency, placeholders, existing
        self._task: Optional[asyncio.Task] = None

    async def initialize(self) -> int:
        """Run initialization once; returns the catalog size afterwards."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())
        # Shielded so a cancelled caller does not cancel everyone else's wait.
        return await asyncio.shield(self._task)

    async def wait_ready(self, timeout: float = None) -> bool:
        if timeout is None:
            timeout = self.config.ready_wait_seconds
        try:
            await asyncio.wait_for(self.ready.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self) -> int:
        try:
            if self.store.count() > 0:
                self.outcome = "existing"
                return self.store.count()

            if await self._fetch_into_store(self.seeds, "seed"):
                self.outcome = "seeded"
            elif self.emergency is not None and await self._fetch_into_store([self.emergency], "emergency"):
                self.outcome = "emergency"
            else:
                self.store.add_articles(self.placeholders())
                self.outcome = "placeholders"
                logger.warning("bootstrap_using_placeholders", count=self.store.count())
        except Exception:
            logger.exception("bootstrap_failed")
            self._last_resort()
        finally:
            self.ready.set()

        logger.info("bootstrap_complete", outcome=self.outcome, catalog_size=self.store.count())
        return self.store.count()

    async def _fetch_into_store(self, sources: Sequence[SourceDescriptor], phase: str) -> bool:
        if not sources:
            return False
        try:
            articles = await asyncio.wait_for(
                self.aggregator.aggregate(sources), self.config.seed_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("bootstrap_fetch_timeout", phase=phase, timeout_s=self.config.seed_timeout_seconds)
            return False
        except Exception as e:
            logger.warning("bootstrap_fetch_failed", phase=phase, error=str(e))
            return False

        inserted = self.store.add_articles(articles) if articles else 0
        logger.info("bootstrap_fetched", phase=phase, fetched=len(articles), inserted=inserted)
        return self.store.count() > 0

    def _last_resort(self) -> None:
        try:
            if self.store.count() == 0:
                self.store.add_articles(self.placeholders())
                self.outcome = "placeholders"
        except Exception:
            logger.exception("bootstrap_placeholders_failed")

    def placeholders(self) -> List[Article]:
        """One synthetic article per category, spread over the preceding hours."""
        now = self.clock()
        stamp = int(now.timestamp() * 1000)
        articles = []
        for n, category in enumerate(Category, start=1):
            label = category.value.capitalize()
            text = (
                f"{label} coverage is being gathered from our sources. "
                "Fresh articles will replace this notice shortly."
            )
            articles.append(Article(
                id=f"{SYNTHETIC_ID_PREFIX}{stamp}-{n}",
                source_id=PLACEHOLDER_SOURCE_ID,
                source_name="Newswire",
                title=f"{label} headlines are on their way",
                canonical_url=PLACEHOLDER_URL.format(n=n),
                category=category,
                excerpt=text,
                summary=text,
                published_at=now - timedelta(hours=n - 1),
                imported_at=now,
                tags=[category.value],
            ))
        return articles
