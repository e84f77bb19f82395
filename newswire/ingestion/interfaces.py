"""Interface definitions for data ingestion."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List
from enum import Enum


SYNTHETIC_ID_PREFIX = "fallback-"


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class Category(Enum):
    """Canonical article categories."""
    WORLD = "world"
    TECHNOLOGY = "technology"
    BUSINESS = "business"
    SCIENCE = "science"
    HEALTH = "health"
    SPORTS = "sports"
    ENTERTAINMENT = "entertainment"
    GENERAL = "general"

    @classmethod
    def coerce(cls, value: Optional[str]) -> "Category":
        """Map a free-form category label onto a canonical category."""
        if not value:
            return cls.GENERAL
        value = value.strip().lower()
        aliases = {"tech": "technology", "top": "general", "politics": "world"}
        value = aliases.get(value, value)
        try:
            return cls(value)
        except ValueError:
            return cls.GENERAL


class SourceProtocol(Enum):
    """Wire protocol spoken by a source."""
    RSS = "rss"
    HEADLINE_API = "headline_api"      # NewsAPI-style JSON envelope
    STRUCTURED_API = "structured_api"  # NewsData-style JSON envelope
    AGGREGATOR = "aggregator"          # Google News topic RSS


class ArticleStatus(Enum):
    PUBLISHED = "published"
    DRAFT = "draft"


class FailureKind(Enum):
    """Why an adapter came back empty."""
    TRANSIENT = "transient"        # timeout, dropped connection, 5xx
    UNREACHABLE = "unreachable"    # direct path refused or blocked
    RATE_LIMITED = "rate_limited"  # HTTP 429, never retried
    MALFORMED = "malformed"        # unparseable XML/JSON


class NewswireError(Exception):
    """Base error for the package."""


class FetchError(NewswireError):
    """A single fetch attempt failed."""

    def __init__(self, message: str, kind: FailureKind = FailureKind.TRANSIENT):
        super().__init__(message)
        self.kind = kind


class TransientFetchError(FetchError):
    """Retryable failure."""


class RateLimitedError(FetchError):
    """Upstream asked us to back off."""

    def __init__(self, message: str):
        super().__init__(message, FailureKind.RATE_LIMITED)


class MalformedPayloadError(FetchError):
    """Upstream returned something we cannot parse."""

    def __init__(self, message: str):
        super().__init__(message, FailureKind.MALFORMED)


class ArticleNotFound(NewswireError, KeyError):
    """No article with the requested id."""


@dataclass(frozen=True)
class SourceDescriptor:
    """Configuration for a single feed. Immutable at runtime."""
    id: str
    name: str
    protocol: SourceProtocol
    url: str = ""
    category: Category = Category.GENERAL
    active: bool = True
    priority: int = 5  # higher = fetched more eagerly
    retries: int = 2
    timeout_ms: int = 12000
    country: Optional[str] = None
    language: str = "en"
    api_key: Optional[str] = None
    keywords: tuple = ()
    exclude_keywords: tuple = ()


@dataclass
class SourceState:
    """Runtime scheduling metadata for one source."""
    source_id: str
    active: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    articles_fetched: int = 0
    consecutive_failures: int = 0
    last_fetch_ms: int = 0
    errors: List[str] = field(default_factory=list)

    MAX_ERRORS = 10

    def record_error(self, error: str) -> None:
        self.errors.append(error)
        del self.errors[:-self.MAX_ERRORS]

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "active": self.active,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "articles_fetched": self.articles_fetched,
            "consecutive_failures": self.consecutive_failures,
            "last_fetch_ms": self.last_fetch_ms,
            "errors": list(self.errors),
        }


@dataclass
class Article:
    """The canonical article record every adapter produces."""
    id: str
    source_id: str
    source_name: str
    title: str
    canonical_url: str
    category: Category = Category.GENERAL
    excerpt: str = ""
    summary: str = ""
    image_url: str = ""
    published_at: datetime = field(default_factory=utcnow)
    imported_at: datetime = field(default_factory=utcnow)
    status: ArticleStatus = ArticleStatus.PUBLISHED
    view_count: int = 0
    featured: bool = False
    breaking: bool = False
    trending: bool = False
    tags: List[str] = field(default_factory=list)
    read_time: int = 1

    @property
    def is_synthetic(self) -> bool:
        return self.id.startswith(SYNTHETIC_ID_PREFIX)

    def recency_key(self) -> datetime:
        return self.imported_at or self.published_at

    def to_dict(self) -> dict:
        """Convert to the JSON shape served to consumers."""
        return {
            "id": self.id,
            "sourceId": self.source_id,
            "sourceName": self.source_name,
            "category": self.category.value,
            "title": self.title,
            "excerpt": self.excerpt,
            "summary": self.summary,
            "canonicalUrl": self.canonical_url,
            "imageUrl": self.image_url,
            "publishedAt": self.published_at.isoformat(),
            "importedAt": self.imported_at.isoformat(),
            "status": self.status.value,
            "viewCount": self.view_count,
            "featured": self.featured,
            "breaking": self.breaking,
            "trending": self.trending,
            "tags": list(self.tags),
            "readTime": self.read_time,
        }


@dataclass
class FetchFailure:
    """Logged cause of an empty adapter result."""
    kind: FailureKind
    message: str
    status: Optional[int] = None

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.kind.value}: {self.message} (HTTP {self.status})"
        return f"{self.kind.value}: {self.message}"


@dataclass
class FetchOutcome:
    """What an adapter returns: articles, or nothing plus a cause."""
    articles: List[Article] = field(default_factory=list)
    failure: Optional[FetchFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def failed(cls, kind: FailureKind, message: str, status: int = None) -> "FetchOutcome":
        return cls(articles=[], failure=FetchFailure(kind, message, status))


@dataclass
class FetchReport:
    """Result of one resilience-wrapped fetch."""
    source_id: str
    articles: List[Article] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 0
    used_proxy: bool = False
    rate_limited: bool = False
    elapsed_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None


class AdapterInterface:
    """Interface for protocol adapters."""

    supports_proxy = False

    async def fetch(self, descriptor: SourceDescriptor) -> FetchOutcome:
        """Fetch and normalize one source. Must not raise."""
        raise NotImplementedError

    async def fetch_via_proxy(self, descriptor: SourceDescriptor) -> FetchOutcome:
        """Re-fetch the same content through an alternate transport."""
        return FetchOutcome.failed(FailureKind.UNREACHABLE, "no alternate transport")
