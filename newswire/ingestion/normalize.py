"""Map parsed wire records onto canonical articles."""

import itertools
import math
import re
from datetime import datetime
from typing import Callable, Iterable, List, Optional

import structlog

from .interfaces import Article, ArticleStatus, Category, SourceDescriptor, utcnow
from .parsing import FeedItem, HeadlineEntry, StructuredEntry, truncate
from ..classification.signals import KeywordSignals
from ..config.settings import Settings, settings as default_settings

logger = structlog.get_logger()

# Process-wide ordinal so ids stay unique across concurrent batches.
_ordinals = itertools.count()


class ArticleFactory:
    """Builds canonical articles; one mapping method per wire variant."""

    def __init__(
        self,
        signals: KeywordSignals = None,
        config: Settings = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.signals = signals or KeywordSignals()
        self.config = config or default_settings
        self.clock = clock

    def from_feed_items(self, descriptor: SourceDescriptor, items: Iterable[FeedItem]) -> List[Article]:
        articles = []
        for item in items:
            article = self._build(
                descriptor,
                title=item.title,
                url=item.link,
                text=item.description,
                image_url=item.image_url,
                published_at=item.published_at,
            )
            if article:
                articles.append(article)
            if len(articles) >= self.config.max_items_per_feed:
                break
        return articles

    def from_headlines(self, descriptor: SourceDescriptor, entries: Iterable[HeadlineEntry]) -> List[Article]:
        articles = []
        for entry in entries:
            article = self._build(
                descriptor,
                title=entry.title,
                url=entry.url,
                text=entry.description or entry.content,
                image_url=entry.image_url,
                published_at=entry.published_at,
                source_name=entry.source_name,
            )
            if article:
                articles.append(article)
        return articles

    def from_structured(self, descriptor: SourceDescriptor, entries: Iterable[StructuredEntry]) -> List[Article]:
        articles = []
        for entry in entries:
            category = None
            if entry.categories:
                coerced = Category.coerce(entry.categories[0])
                if coerced is not Category.GENERAL:
                    category = coerced
            article = self._build(
                descriptor,
                title=entry.title,
                url=entry.link,
                text=entry.description or entry.content,
                image_url=entry.image_url,
                published_at=entry.published_at,
                source_name=entry.source_id,
                category=category,
            )
            if article:
                articles.append(article)
        return articles

    def _build(
        self,
        descriptor: SourceDescriptor,
        title: str,
        url: str,
        text: str,
        image_url: str = "",
        published_at: Optional[datetime] = None,
        source_name: str = "",
        category: Category = None,
    ) -> Optional[Article]:
        url = (url or "").strip()
        title = (title or "").strip()
        if not url or not title:
            return None
        if self._excluded(descriptor, title, text):
            return None

        now = self.clock()
        signals = self.signals.extract(title, text or "")
        excerpt = truncate(text or "", self.config.excerpt_max_length)
        if category is None and descriptor.category is Category.GENERAL and signals.category_hint:
            hinted = Category.coerce(signals.category_hint)
            if hinted is not Category.GENERAL:
                category = hinted

        return Article(
            id=f"{descriptor.id}-{int(now.timestamp() * 1000)}-{next(_ordinals)}",
            source_id=descriptor.id,
            source_name=source_name or descriptor.name,
            title=title,
            canonical_url=url,
            category=category or descriptor.category,
            excerpt=excerpt,
            summary=excerpt,
            image_url=image_url or "",
            published_at=published_at or now,
            imported_at=now,
            status=ArticleStatus.PUBLISHED,
            breaking=signals.breaking,
            tags=signals.tags,
            read_time=max(1, math.ceil(len(text or "") / 1000)),
        )

    @staticmethod
    def _excluded(descriptor: SourceDescriptor, title: str, text: str) -> bool:
        if not descriptor.exclude_keywords:
            return False
        haystack = f"{title} {text or ''}".lower()
        return any(keyword.lower() in haystack for keyword in descriptor.exclude_keywords)


_WHITESPACE_RE = re.compile(r"\s+")


def normalize_url(url: str) -> str:
    """Case- and whitespace-insensitive dedup key for a canonical URL."""
    if not url:
        return ""
    return _WHITESPACE_RE.sub("", url).lower()


def normalize_title(title: str) -> str:
    if not title:
        return ""
    return _WHITESPACE_RE.sub(" ", title).strip().casefold()
