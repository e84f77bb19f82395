"""Keyword-based signals: tags, breaking-news detection, freshness badges."""

import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .interfaces import FreshnessBadge, SignalExtractorInterface, SignalResult
from ..config.settings import Settings, settings as default_settings


class KeywordSignals(SignalExtractorInterface):
    """Fast keyword matcher for tags and the breaking flag."""

    # Tag -> patterns. Order matters: earlier tags win when capped.
    TAG_PATTERNS: Dict[str, List[str]] = {
        "technology": [r"\btechnology\b", r"\btech\b"],
        "ai": [r"\bai\b", r"\bartificial intelligence\b", r"\bmachine learning\b"],
        "business": [r"\bbusiness\b", r"\bcompany\b", r"\bearnings\b"],
        "finance": [r"\bfinance\b", r"\bstock market\b", r"\bstocks?\b", r"\binvestors?\b"],
        "economy": [r"\beconomy\b", r"\binflation\b", r"\binterest rates?\b"],
        "health": [r"\bhealth\b", r"\bmedical\b", r"\bvaccines?\b", r"\bhospitals?\b"],
        "science": [r"\bscience\b", r"\bresearch(ers)?\b", r"\bscientists?\b"],
        "politics": [r"\bpolitics\b", r"\bgovernment\b", r"\belections?\b", r"\bpolicy\b"],
        "sports": [r"\bsports?\b", r"\bfootball\b", r"\bbasketball\b", r"\bsoccer\b"],
        "entertainment": [r"\bentertainment\b", r"\bmovies?\b", r"\bmusic\b", r"\bfilm\b"],
        "world": [r"\bworld\b", r"\binternational\b", r"\bglobal\b"],
        "climate": [r"\bclimate\b", r"\benvironment(al)?\b", r"\bemissions\b"],
        "energy": [r"\benergy\b", r"\boil\b", r"\bsolar\b"],
    }

    BREAKING_PATTERNS = [
        r"^\s*breaking\b", r"\bbreaking news\b", r"^\s*live:", r"\bjust in\b",
        r"\bdeveloping story\b",
    ]

    MAX_TAGS = 5

    def __init__(self):
        self._compile_patterns()

    def _compile_patterns(self):
        """Compile regex patterns for efficiency."""
        self.compiled = {
            tag: [re.compile(p, re.IGNORECASE) for p in patterns]
            for tag, patterns in self.TAG_PATTERNS.items()
        }
        self.breaking = [re.compile(p, re.IGNORECASE) for p in self.BREAKING_PATTERNS]

    def tags(self, title: str, content: str) -> List[str]:
        text = f"{title} {content}"
        found = []
        for tag, patterns in self.compiled.items():
            if any(p.search(text) for p in patterns):
                found.append(tag)
            if len(found) >= self.MAX_TAGS:
                break
        return found

    def is_breaking(self, title: str) -> bool:
        return any(p.search(title or "") for p in self.breaking)

    def extract(self, title: str, content: str) -> SignalResult:
        """Extract tags and the breaking flag from one article."""
        tags = self.tags(title or "", content or "")
        return SignalResult(
            tags=tags,
            breaking=self.is_breaking(title),
            category_hint=tags[0] if tags else None,
        )


def freshness_badge(
    published_at: datetime,
    now: datetime,
    config: Settings = None,
) -> Optional[FreshnessBadge]:
    """Return the recency badge for an article, or None if it is older than a day."""
    config = config or default_settings
    age = now - published_at
    if age < timedelta(0):
        age = timedelta(0)
    if age <= timedelta(minutes=config.very_recent_minutes):
        return FreshnessBadge.VERY_RECENT
    if age <= timedelta(minutes=config.recent_minutes):
        return FreshnessBadge.RECENT
    if age <= timedelta(minutes=config.today_minutes):
        return FreshnessBadge.TODAY
    return None
