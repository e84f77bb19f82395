"""Article deduplication: exact URL match, then syndicated near-duplicates."""

from datetime import datetime
from typing import Dict, Iterable, List

import structlog

from ..ingestion.interfaces import Article
from ..ingestion.normalize import normalize_title, normalize_url

logger = structlog.get_logger()


class Deduplicator:
    """Keep-first deduplication over an ordered batch."""

    def __init__(self, window_seconds: float = 60.0):
        self.window_seconds = window_seconds

    def apply(self, articles: Iterable[Article]) -> List[Article]:
        articles = list(articles)
        unique = self.near_duplicates(self.by_url(articles))
        if len(unique) != len(articles):
            logger.debug("duplicates_removed", before=len(articles), after=len(unique))
        return unique

    @staticmethod
    def by_url(articles: Iterable[Article]) -> List[Article]:
        seen = set()
        result = []
        for article in articles:
            key = normalize_url(article.canonical_url)
            if key in seen:
                continue
            seen.add(key)
            result.append(article)
        return result

    def near_duplicates(self, articles: Iterable[Article]) -> List[Article]:
        """Drop articles whose normalized title matches an earlier kept one
        published strictly less than ``window_seconds`` apart."""
        kept_times: Dict[str, List[datetime]] = {}
        result = []
        for article in articles:
            key = normalize_title(article.title)
            times = kept_times.setdefault(key, [])
            if key and any(
                abs((article.published_at - t).total_seconds()) < self.window_seconds
                for t in times
            ):
                continue
            times.append(article.published_at)
            result.append(article)
        return result
