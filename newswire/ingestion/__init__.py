"""Data ingestion - fetching, parsing and normalizing news sources."""

from .interfaces import (
    Article, ArticleStatus, Category, SourceDescriptor, SourceProtocol, SourceState,
    FailureKind, FetchFailure, FetchOutcome, FetchReport, AdapterInterface,
    NewswireError, FetchError, TransientFetchError, RateLimitedError,
    MalformedPayloadError, ArticleNotFound, SYNTHETIC_ID_PREFIX,
)
from .http import FeedHttpClient, HttpResponse
from .adapters import (
    RSSAdapter, AggregatorAdapter, HeadlineAPIAdapter, StructuredNewsAdapter, build_adapters,
)
from .resilience import ResilientFetcher

__all__ = [
    "Article", "ArticleStatus", "Category", "SourceDescriptor", "SourceProtocol", "SourceState",
    "FailureKind", "FetchFailure", "FetchOutcome", "FetchReport", "AdapterInterface",
    "NewswireError", "FetchError", "TransientFetchError", "RateLimitedError",
    "MalformedPayloadError", "ArticleNotFound", "SYNTHETIC_ID_PREFIX",
    "FeedHttpClient", "HttpResponse",
    "RSSAdapter", "AggregatorAdapter", "HeadlineAPIAdapter", "StructuredNewsAdapter",
    "build_adapters", "ResilientFetcher",
]
