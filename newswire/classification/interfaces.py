"""Interface definitions for article signals."""

from dataclasses import dataclass, field
from typing import List, Optional
from enum import Enum


class FreshnessBadge(Enum):
    """Recency badges shown next to new articles."""
    VERY_RECENT = "very_recent"
    RECENT = "recent"
    TODAY = "today"


@dataclass
class SignalResult:
    """Keyword signals extracted from an article."""
    tags: List[str] = field(default_factory=list)
    breaking: bool = False
    category_hint: Optional[str] = None


class SignalExtractorInterface:
    """Interface for keyword signal extraction."""

    def extract(self, title: str, content: str) -> SignalResult:
        """Extract signals from a single article."""
        raise NotImplementedError
