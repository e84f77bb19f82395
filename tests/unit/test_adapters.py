"""Unit tests for protocol adapters."""

import asyncio
import dataclasses
import json
from urllib.parse import parse_qs, urlparse

import aiohttp
import pytest

from conftest import RSS_ONE_ITEM, FakeHttpClient
from newswire.ingestion.adapters import (
    AggregatorAdapter, HeadlineAPIAdapter, RSSAdapter, StructuredNewsAdapter,
    build_adapters, classify_status,
)
from newswire.ingestion.http import HttpResponse
from newswire.ingestion.interfaces import (
    Category, FailureKind, SourceDescriptor, SourceProtocol,
)


def ok(text: str) -> HttpResponse:
    return HttpResponse(status=200, text=text)


@pytest.fixture
def headline_descriptor():
    return SourceDescriptor(
        id="newsapi-tech",
        name="NewsAPI Technology",
        protocol=SourceProtocol.HEADLINE_API,
        url="https://newsapi.test/v2/top-headlines",
        category=Category.TECHNOLOGY,
        country="US",
        api_key="secret",
        keywords=("ai", "chips"),
    )


@pytest.fixture
def structured_descriptor():
    return SourceDescriptor(
        id="newsdata-world",
        name="NewsData World",
        protocol=SourceProtocol.STRUCTURED_API,
        url="https://newsdata.test/api/1/news",
        category=Category.GENERAL,
        api_key="secret",
    )


class TestClassifyStatus:
    """Tests for HTTP status mapping."""

    def test_success(self):
        """Should treat 2xx as success."""
        assert classify_status(200) is None

    def test_rate_limited(self):
        """Should map 429 to rate limited."""
        assert classify_status(429) is FailureKind.RATE_LIMITED

    def test_other_errors_unreachable(self):
        """Should map other error statuses to unreachable."""
        assert classify_status(403) is FailureKind.UNREACHABLE
        assert classify_status(503) is FailureKind.UNREACHABLE


@pytest.mark.asyncio
class TestRSSAdapter:
    """Tests for the RSS adapter."""

    async def test_enclosure_example(self, rss_descriptor, test_settings):
        """Should map an enclosure item onto a canonical article."""
        http = FakeHttpClient({rss_descriptor.url: ok(RSS_ONE_ITEM)})
        outcome = await RSSAdapter(http, config=test_settings).fetch(rss_descriptor)

        assert outcome.ok
        assert len(outcome.articles) == 1
        article = outcome.articles[0]
        assert article.image_url == "http://img/1.jpg"
        assert article.canonical_url == "http://x/1"
        assert article.source_id == rss_descriptor.id
        assert article.category is Category.TECHNOLOGY
        assert article.id.startswith(f"{rss_descriptor.id}-")

    async def test_status_failure(self, rss_descriptor, test_settings):
        """Should report a blocked feed as unreachable with its status."""
        http = FakeHttpClient({rss_descriptor.url: HttpResponse(status=403, text="")})
        outcome = await RSSAdapter(http, config=test_settings).fetch(rss_descriptor)
        assert outcome.articles == []
        assert outcome.failure.kind is FailureKind.UNREACHABLE
        assert outcome.failure.status == 403

    async def test_rate_limited(self, rss_descriptor, test_settings):
        """Should report 429 as rate limited."""
        http = FakeHttpClient({rss_descriptor.url: HttpResponse(status=429, text="")})
        outcome = await RSSAdapter(http, config=test_settings).fetch(rss_descriptor)
        assert outcome.failure.kind is FailureKind.RATE_LIMITED

    async def test_malformed_payload(self, rss_descriptor, test_settings):
        """Should report a non-feed body as malformed."""
        http = FakeHttpClient({rss_descriptor.url: ok("<html><body>Blocked</body></html>")})
        outcome = await RSSAdapter(http, config=test_settings).fetch(rss_descriptor)
        assert outcome.failure.kind is FailureKind.MALFORMED

    async def test_connection_error_never_raises(self, rss_descriptor, test_settings):
        """Should turn a refused connection into an outcome."""
        http = FakeHttpClient({rss_descriptor.url: aiohttp.ClientConnectionError("refused")})
        outcome = await RSSAdapter(http, config=test_settings).fetch(rss_descriptor)
        assert outcome.failure.kind is FailureKind.UNREACHABLE

    async def test_timeout_is_transient(self, rss_descriptor, test_settings):
        """Should treat a timeout as transient."""
        http = FakeHttpClient({rss_descriptor.url: asyncio.TimeoutError()})
        outcome = await RSSAdapter(http, config=test_settings).fetch(rss_descriptor)
        assert outcome.failure.kind is FailureKind.TRANSIENT

    async def test_fetch_via_proxy(self, rss_descriptor, test_settings):
        """Should unwrap the proxy's contents envelope."""
        wrapped = json.dumps({"contents": RSS_ONE_ITEM})
        http = FakeHttpClient({test_settings.proxy_fetch_url: ok(wrapped)})
        outcome = await RSSAdapter(http, config=test_settings).fetch_via_proxy(rss_descriptor)

        assert len(outcome.articles) == 1
        url, params = http.calls[0]
        assert url == test_settings.proxy_fetch_url
        assert params == {"url": rss_descriptor.url}

    async def test_exclude_keywords(self, test_settings):
        """Should drop items matching an exclude keyword."""
        descriptor = SourceDescriptor(
            id="filtered", name="Filtered", protocol=SourceProtocol.RSS,
            url="https://example.com/f.xml", exclude_keywords=("Sponsored",),
        )
        payload = """<rss version="2.0"><channel>
          <item><title>Sponsored: buy now</title><link>http://x/ad</link></item>
          <item><title>Real news</title><link>http://x/news</link></item>
        </channel></rss>"""
        http = FakeHttpClient({descriptor.url: ok(payload)})
        outcome = await RSSAdapter(http, config=test_settings).fetch(descriptor)
        assert [a.title for a in outcome.articles] == ["Real news"]


class TestAggregatorAdapter:
    """Tests for the topic aggregator adapter."""

    def test_build_url(self, test_settings):
        """Should build the topic URL with locale parameters."""
        rss = RSSAdapter(FakeHttpClient(), config=test_settings)
        descriptor = SourceDescriptor(
            id="google-tech", name="Google Tech", protocol=SourceProtocol.AGGREGATOR,
            category=Category.TECHNOLOGY, country="us", keywords=("openai",),
        )
        url = AggregatorAdapter(rss, test_settings).build_url(descriptor)
        parsed = urlparse(url)
        query = parse_qs(parsed.query)

        assert url.startswith(test_settings.aggregator_url)
        assert query["topic"] == ["TECHNOLOGY"]
        assert query["q"] == ["openai"]
        assert query["hl"] == ["en"]
        assert query["gl"] == ["US"]
        assert query["ceid"] == ["US:en"]

    def test_general_maps_to_world(self, test_settings):
        """Should map the general category to the world topic."""
        rss = RSSAdapter(FakeHttpClient(), config=test_settings)
        descriptor = SourceDescriptor(
            id="google-general", name="Google", protocol=SourceProtocol.AGGREGATOR,
        )
        url = AggregatorAdapter(rss, test_settings).build_url(descriptor)
        assert "topic=WORLD" in url

    async def test_delegates_to_rss(self, test_settings):
        """Should fetch the built URL through the RSS adapter."""
        descriptor = SourceDescriptor(
            id="google-health", name="Google Health", protocol=SourceProtocol.AGGREGATOR,
            category=Category.HEALTH,
        )
        rss = RSSAdapter(FakeHttpClient(), config=test_settings)
        adapter = AggregatorAdapter(rss, test_settings)
        rss.http.routes[adapter.build_url(descriptor)] = ok(RSS_ONE_ITEM)

        outcome = await adapter.fetch(descriptor)
        assert len(outcome.articles) == 1
        assert outcome.articles[0].source_id == "google-health"


@pytest.mark.asyncio
class TestHeadlineAPIAdapter:
    """Tests for the headline API adapter."""

    async def test_field_mapping(self, headline_descriptor, test_settings):
        """Should map headline fields onto articles."""
        body = json.dumps({
            "status": "ok",
            "totalResults": 1,
            "articles": [{
                "source": {"name": "Wire Service"},
                "title": "Chips rally",
                "description": "Semiconductor stocks rose.",
                "url": "https://example.com/chips",
                "urlToImage": "https://img/chips.jpg",
                "publishedAt": "2024-05-01T10:00:00Z",
            }],
        })
        http = FakeHttpClient({headline_descriptor.url: ok(body)})
        outcome = await HeadlineAPIAdapter(http, config=test_settings).fetch(headline_descriptor)

        article = outcome.articles[0]
        assert article.canonical_url == "https://example.com/chips"
        assert article.image_url == "https://img/chips.jpg"
        assert article.source_name == "Wire Service"
        assert article.excerpt == "Semiconductor stocks rose."

        _, params = http.calls[0]
        assert params["apiKey"] == "secret"
        assert params["pageSize"] == 50
        assert params["category"] == "technology"
        assert params["country"] == "us"
        assert params["q"] == "ai OR chips"

    async def test_http_429(self, headline_descriptor, test_settings):
        """Should report 429 as rate limited."""
        http = FakeHttpClient({headline_descriptor.url: HttpResponse(status=429, text="{}")})
        outcome = await HeadlineAPIAdapter(http, config=test_settings).fetch(headline_descriptor)
        assert outcome.failure.kind is FailureKind.RATE_LIMITED

    async def test_rate_limited_body(self, headline_descriptor, test_settings):
        """Should treat a rateLimited error body as rate limited."""
        body = json.dumps({"status": "error", "code": "rateLimited", "message": "slow down"})
        http = FakeHttpClient({headline_descriptor.url: ok(body)})
        outcome = await HeadlineAPIAdapter(http, config=test_settings).fetch(headline_descriptor)
        assert outcome.failure.kind is FailureKind.RATE_LIMITED

    async def test_error_status_malformed(self, headline_descriptor, test_settings):
        """Should treat an error envelope as malformed."""
        body = json.dumps({"status": "error", "code": "apiKeyInvalid"})
        http = FakeHttpClient({headline_descriptor.url: ok(body)})
        outcome = await HeadlineAPIAdapter(http, config=test_settings).fetch(headline_descriptor)
        assert outcome.failure.kind is FailureKind.MALFORMED

    async def test_missing_key_is_empty_not_error(self, headline_descriptor, test_settings):
        """Should skip the request when no key is configured."""
        descriptor = dataclasses.replace(headline_descriptor, api_key=None)
        http = FakeHttpClient()
        outcome = await HeadlineAPIAdapter(http, config=test_settings).fetch(descriptor)
        assert outcome.ok
        assert outcome.articles == []
        assert http.calls == []


@pytest.mark.asyncio
class TestStructuredNewsAdapter:
    """Tests for the structured news adapter."""

    async def test_field_mapping(self, structured_descriptor, test_settings):
        """Should map structured fields onto articles."""
        body = json.dumps({
            "status": "success",
            "results": [{
                "title": "Telescope finds water",
                "link": "https://example.com/water",
                "description": "Astronomers report vapor.",
                "image_url": "https://img/water.jpg",
                "pubDate": "2024-05-01 10:00:00",
                "source_id": "spacewire",
                "category": ["science"],
            }],
        })
        http = FakeHttpClient({structured_descriptor.url: ok(body)})
        outcome = await StructuredNewsAdapter(http, config=test_settings).fetch(structured_descriptor)

        article = outcome.articles[0]
        assert article.canonical_url == "https://example.com/water"
        assert article.image_url == "https://img/water.jpg"
        assert article.source_name == "spacewire"
        assert article.category is Category.SCIENCE

        _, params = http.calls[0]
        assert params["apikey"] == "secret"
        assert params["category"] == "top"

    async def test_http_429(self, structured_descriptor, test_settings):
        """Should report 429 as rate limited."""
        http = FakeHttpClient({structured_descriptor.url: HttpResponse(status=429, text="")})
        outcome = await StructuredNewsAdapter(http, config=test_settings).fetch(structured_descriptor)
        assert outcome.failure.kind is FailureKind.RATE_LIMITED


def test_build_adapters_covers_every_protocol(test_settings):
    """Should provide one adapter per protocol."""
    adapters = build_adapters(FakeHttpClient(), config=test_settings)
    assert set(adapters) == set(SourceProtocol)
    assert adapters[SourceProtocol.AGGREGATOR].rss is adapters[SourceProtocol.RSS]
