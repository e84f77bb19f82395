"""Keyword signals for articles."""

from .interfaces import FreshnessBadge, SignalResult, SignalExtractorInterface
from .signals import KeywordSignals, freshness_badge

__all__ = [
    "FreshnessBadge", "SignalResult", "SignalExtractorInterface",
    "KeywordSignals", "freshness_badge"
]
