"""Protocol adapters: one per source protocol, each returning a FetchOutcome."""

import asyncio
import dataclasses
import time
from typing import Dict, Optional
from urllib.parse import urlencode

import aiohttp
import structlog

from .http import FeedHttpClient, HttpResponse
from .interfaces import (
    AdapterInterface, Category, FailureKind, FetchError, FetchOutcome,
    SourceDescriptor, SourceProtocol,
)
from .normalize import ArticleFactory
from .parsing import parse_feed, parse_headline_envelope, parse_structured_envelope
from ..config.settings import Settings, settings as default_settings

logger = structlog.get_logger()


def classify_status(status: int) -> Optional[FailureKind]:
    """Map an HTTP status onto a failure kind (None for 2xx)."""
    if 200 <= status < 300:
        return None
    if status == 429:
        return FailureKind.RATE_LIMITED
    return FailureKind.UNREACHABLE


class BaseAdapter(AdapterInterface):
    """Shared error boundary: nothing raised inside ``_fetch`` escapes ``fetch``."""

    protocol: SourceProtocol = None

    def __init__(self, http: FeedHttpClient, factory: ArticleFactory = None, config: Settings = None):
        self.http = http
        self.config = config or default_settings
        self.factory = factory or ArticleFactory(config=self.config)

    async def fetch(self, descriptor: SourceDescriptor) -> FetchOutcome:
        return await self._guarded(descriptor, self._fetch(descriptor))

    async def _fetch(self, descriptor: SourceDescriptor) -> FetchOutcome:
        raise NotImplementedError

    async def _guarded(self, descriptor: SourceDescriptor, call) -> FetchOutcome:
        start_time = time.monotonic()
        try:
            outcome = await call
        except asyncio.TimeoutError:
            outcome = FetchOutcome.failed(FailureKind.TRANSIENT, "timed out")
        except aiohttp.ClientConnectionError as e:
            outcome = FetchOutcome.failed(FailureKind.UNREACHABLE, f"connection error: {e}")
        except aiohttp.ClientError as e:
            outcome = FetchOutcome.failed(FailureKind.TRANSIENT, f"client error: {e}")
        except FetchError as e:
            outcome = FetchOutcome.failed(e.kind, str(e))
        except Exception as e:
            logger.exception("adapter_unexpected_error", source=descriptor.id)
            outcome = FetchOutcome.failed(FailureKind.TRANSIENT, f"unexpected error: {e!r}")

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        if outcome.ok:
            logger.info(
                "feed_fetched",
                source=descriptor.id,
                articles=len(outcome.articles),
                time_ms=elapsed_ms,
            )
        else:
            logger.warning(
                "feed_fetch_failed",
                source=descriptor.id,
                kind=outcome.failure.kind.value,
                error=outcome.failure.message,
                status=outcome.failure.status,
                time_ms=elapsed_ms,
            )
        return outcome

    @staticmethod
    def _status_failure(response: HttpResponse) -> Optional[FetchOutcome]:
        kind = classify_status(response.status)
        if kind is None:
            return None
        return FetchOutcome.failed(kind, f"HTTP {response.status}", response.status)

    @staticmethod
    def _json(response: HttpResponse):
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"invalid JSON: {e}", FailureKind.MALFORMED) from e


class RSSAdapter(BaseAdapter):
    """RSS/Atom over HTTP. Accepts XML or a JSON-wrapped feed."""

    protocol = SourceProtocol.RSS
    supports_proxy = True

    async def _fetch(self, descriptor: SourceDescriptor) -> FetchOutcome:
        if not descriptor.url:
            logger.warning("rss_source_without_url", source=descriptor.id)
            return FetchOutcome()
        response = await self.http.get(descriptor.url)
        failure = self._status_failure(response)
        if failure:
            return failure
        return self._to_outcome(descriptor, response.text)

    async def fetch_via_proxy(self, descriptor: SourceDescriptor) -> FetchOutcome:
        """Re-fetch through a public proxy that returns ``{"contents": "<xml>"}``."""
        return await self._guarded(descriptor, self._fetch_via_proxy(descriptor))

    async def _fetch_via_proxy(self, descriptor: SourceDescriptor) -> FetchOutcome:
        if not descriptor.url:
            return FetchOutcome()
        response = await self.http.get(self.config.proxy_fetch_url, params={"url": descriptor.url})
        failure = self._status_failure(response)
        if failure:
            return failure
        return self._to_outcome(descriptor, response.text)

    def _to_outcome(self, descriptor: SourceDescriptor, payload: str) -> FetchOutcome:
        items = parse_feed(payload)
        if not items:
            logger.warning("feed_empty", source=descriptor.id, payload_length=len(payload or ""))
        return FetchOutcome(articles=self.factory.from_feed_items(descriptor, items))


class AggregatorAdapter(AdapterInterface):
    """Topic RSS from a news aggregator: builds the URL, then delegates to RSS."""

    protocol = SourceProtocol.AGGREGATOR
    supports_proxy = True

    TOPICS: Dict[Category, str] = {
        Category.TECHNOLOGY: "TECHNOLOGY",
        Category.BUSINESS: "BUSINESS",
        Category.WORLD: "WORLD",
        Category.SCIENCE: "SCIENCE",
        Category.HEALTH: "HEALTH",
        Category.SPORTS: "SPORTS",
        Category.ENTERTAINMENT: "ENTERTAINMENT",
        Category.GENERAL: "WORLD",
    }

    def __init__(self, rss: RSSAdapter, config: Settings = None):
        self.rss = rss
        self.config = config or rss.config

    def build_url(self, descriptor: SourceDescriptor) -> str:
        language = descriptor.language or "en"
        country = (descriptor.country or "US").upper()
        params = {"topic": self.TOPICS.get(descriptor.category, "WORLD")}
        if descriptor.keywords:
            params["q"] = " ".join(descriptor.keywords)
        params.update({"hl": language, "gl": country, "ceid": f"{country}:{language}"})
        base = descriptor.url or self.config.aggregator_url
        return f"{base}?{urlencode(params)}"

    def _derived(self, descriptor: SourceDescriptor) -> SourceDescriptor:
        return dataclasses.replace(descriptor, url=self.build_url(descriptor))

    async def fetch(self, descriptor: SourceDescriptor) -> FetchOutcome:
        return await self.rss.fetch(self._derived(descriptor))

    async def fetch_via_proxy(self, descriptor: SourceDescriptor) -> FetchOutcome:
        return await self.rss.fetch_via_proxy(self._derived(descriptor))


class HeadlineAPIAdapter(BaseAdapter):
    """NewsAPI-style ``top-headlines`` endpoint."""

    protocol = SourceProtocol.HEADLINE_API

    # Categories the endpoint understands; others are left out of the query.
    CATEGORIES = {"business", "entertainment", "general", "health", "science", "sports", "technology"}

    def build_params(self, descriptor: SourceDescriptor, api_key: str) -> dict:
        params = {"apiKey": api_key, "pageSize": 50}
        if descriptor.category.value in self.CATEGORIES:
            params["category"] = descriptor.category.value
        if descriptor.country:
            params["country"] = descriptor.country.lower()
        elif descriptor.language:
            params["language"] = descriptor.language
        if descriptor.keywords:
            params["q"] = " OR ".join(descriptor.keywords)
        return params

    async def _fetch(self, descriptor: SourceDescriptor) -> FetchOutcome:
        api_key = descriptor.api_key or self.config.newsapi_key
        if not api_key:
            logger.warning("api_key_missing", source=descriptor.id)
            return FetchOutcome()

        response = await self.http.get(
            descriptor.url or self.config.newsapi_url,
            params=self.build_params(descriptor, api_key),
        )
        failure = self._status_failure(response)
        if failure:
            return failure

        data = self._json(response)
        if isinstance(data, dict) and data.get("code") == "rateLimited":
            return FetchOutcome.failed(FailureKind.RATE_LIMITED, "rateLimited", response.status)
        entries = parse_headline_envelope(data)
        return FetchOutcome(articles=self.factory.from_headlines(descriptor, entries))


class StructuredNewsAdapter(BaseAdapter):
    """NewsData-style ``/news`` endpoint with its own field names."""

    protocol = SourceProtocol.STRUCTURED_API

    def build_params(self, descriptor: SourceDescriptor, api_key: str) -> dict:
        category = descriptor.category.value
        params = {
            "apikey": api_key,
            "language": descriptor.language or "en",
            "category": "top" if category == "general" else category,
        }
        if descriptor.country:
            params["country"] = descriptor.country.lower()
        if descriptor.keywords:
            params["q"] = " ".join(descriptor.keywords)
        return params

    async def _fetch(self, descriptor: SourceDescriptor) -> FetchOutcome:
        api_key = descriptor.api_key or self.config.newsdata_key
        if not api_key:
            logger.warning("api_key_missing", source=descriptor.id)
            return FetchOutcome()

        response = await self.http.get(
            descriptor.url or self.config.newsdata_url,
            params=self.build_params(descriptor, api_key),
        )
        failure = self._status_failure(response)
        if failure:
            return failure

        entries = parse_structured_envelope(self._json(response))
        return FetchOutcome(articles=self.factory.from_structured(descriptor, entries))


def build_adapters(
    http: FeedHttpClient,
    factory: ArticleFactory = None,
    config: Settings = None,
) -> Dict[SourceProtocol, AdapterInterface]:
    """One adapter per protocol, sharing the HTTP client and article factory."""
    config = config or default_settings
    factory = factory or ArticleFactory(config=config)
    rss = RSSAdapter(http, factory, config)
    return {
        SourceProtocol.RSS: rss,
        SourceProtocol.AGGREGATOR: AggregatorAdapter(rss, config),
        SourceProtocol.HEADLINE_API: HeadlineAPIAdapter(http, factory, config),
        SourceProtocol.STRUCTURED_API: StructuredNewsAdapter(http, factory, config),
    }
