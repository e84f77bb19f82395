"""In-memory catalog store with copy-on-write snapshots."""

import dataclasses
from collections import Counter
from datetime import datetime
from threading import Lock
from typing import Callable, Dict, List, Tuple

import structlog

from ..ingestion.interfaces import Article, ArticleNotFound, utcnow
from ..ingestion.normalize import normalize_url
from .interfaces import (
    CatalogStoreInterface, Page, DEFAULT_PAGE_SIZE, DEFAULT_RELATED, MAX_RELATED,
    category_value, clamp_limit, clamp_offset, is_related, matches_query,
)

logger = structlog.get_logger()


@dataclasses.dataclass(frozen=True)
class _Snapshot:
    articles: Tuple[Article, ...] = ()     # listing order, newest import first
    index: Dict[str, int] = dataclasses.field(default_factory=dict)
    urls: frozenset = frozenset()


class CatalogStore(CatalogStoreInterface):
    """The current article set.

    Writes are serialized by a lock and publish a new immutable snapshot;
    readers grab the current snapshot once and never see a half-applied batch.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._lock = Lock()
        self._snapshot = _Snapshot()
        self._clock = clock
        self._last_import: datetime = None

    # Writes

    def add_articles(self, articles: List[Article]) -> int:
        with self._lock:
            current = self._snapshot
            fresh = self._stamp(self._unique(articles, skip=current.urls, skip_ids=current.index))
            if fresh:
                self._publish(fresh + list(current.articles))
        logger.info("catalog_merged", inserted=len(fresh), offered=len(articles), total=self.count())
        return len(fresh)

    def replace_articles(self, articles: List[Article]) -> int:
        with self._lock:
            fresh = self._stamp(self._unique(articles))
            self._publish(fresh)
        logger.info("catalog_replaced", total=len(fresh))
        return len(fresh)

    def increment_view(self, article_id: str) -> int:
        with self._lock:
            current = self._snapshot
            position = current.index.get(article_id)
            if position is None:
                raise ArticleNotFound(article_id)
            article = current.articles[position]
            updated = dataclasses.replace(article, view_count=article.view_count + 1)
            articles = list(current.articles)
            articles[position] = updated
            self._snapshot = dataclasses.replace(current, articles=tuple(articles))
        return updated.view_count

    def _unique(self, articles: List[Article], skip=frozenset(), skip_ids=None) -> List[Article]:
        seen = set(skip)
        skip_ids = skip_ids or {}
        result = []
        for article in articles:
            key = normalize_url(article.canonical_url)
            if not key or key in seen or article.id in skip_ids:
                continue
            seen.add(key)
            result.append(article)
        return result

    def _stamp(self, articles: List[Article]) -> List[Article]:
        """Copy incoming articles, assigning a non-decreasing import time."""
        now = self._clock()
        if self._last_import is not None and now < self._last_import:
            now = self._last_import
        if articles:
            self._last_import = now
        return [dataclasses.replace(a, imported_at=now, tags=list(a.tags)) for a in articles]

    def _publish(self, articles: List[Article]) -> None:
        # Stable: within an import batch the incoming order survives.
        articles.sort(key=lambda a: a.recency_key(), reverse=True)
        self._snapshot = _Snapshot(
            articles=tuple(articles),
            index={a.id: i for i, a in enumerate(articles)},
            urls=frozenset(normalize_url(a.canonical_url) for a in articles),
        )

    # Reads

    def list_articles(
        self,
        category=None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        featured: bool = None,
        breaking: bool = None,
        trending: bool = None,
    ) -> Page:
        wanted = category_value(category)
        selected = [
            a for a in self._snapshot.articles
            if (wanted is None or a.category.value == wanted)
            and (featured is None or a.featured == featured)
            and (breaking is None or a.breaking == breaking)
            and (trending is None or a.trending == trending)
        ]
        return Page.slice(selected, clamp_limit(limit), clamp_offset(offset))

    def get_by_id(self, article_id: str) -> Article:
        snapshot = self._snapshot
        position = snapshot.index.get(article_id)
        if position is None:
            raise ArticleNotFound(article_id)
        return snapshot.articles[position]

    def search(self, query: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> Page:
        needle = (query or "").strip().lower()
        if not needle:
            return Page()
        matches = [a for a in self._snapshot.articles if matches_query(a, needle)]
        return Page.slice(matches, clamp_limit(limit), clamp_offset(offset))

    def related(self, article_id: str, limit: int = DEFAULT_RELATED) -> List[Article]:
        snapshot = self._snapshot
        position = snapshot.index.get(article_id)
        if position is None:
            return []
        article = snapshot.articles[position]
        limit = clamp_limit(limit, DEFAULT_RELATED, MAX_RELATED)
        result = []
        for other in snapshot.articles:
            if is_related(article, other):
                result.append(other)
                if len(result) >= limit:
                    break
        return result

    def count(self) -> int:
        return len(self._snapshot.articles)

    def stats(self) -> dict:
        articles = self._snapshot.articles
        published = [a.published_at for a in articles]
        return {
            "total": len(articles),
            "by_category": dict(Counter(a.category.value for a in articles)),
            "synthetic": sum(1 for a in articles if a.is_synthetic),
            "newest": max(published).isoformat() if published else None,
            "oldest": min(published).isoformat() if published else None,
            "last_import": self._last_import.isoformat() if self._last_import else None,
        }

    def categories(self) -> List[dict]:
        counts = Counter(a.category.value for a in self._snapshot.articles)
        return [{"category": name, "count": n} for name, n in counts.most_common()]

    def sources(self) -> List[dict]:
        counts = Counter((a.source_id, a.source_name) for a in self._snapshot.articles)
        return [
            {"sourceId": source_id, "sourceName": name, "count": n}
            for (source_id, name), n in counts.most_common()
        ]
