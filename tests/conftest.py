"""Pytest configuration and shared fixtures."""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Union

import pytest

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from newswire.config.settings import Settings
from newswire.ingestion.http import HttpResponse
from newswire.ingestion.interfaces import (
    AdapterInterface, Article, Category, FetchOutcome, SourceDescriptor, SourceProtocol,
)

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

RSS_ONE_ITEM = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example</title>
    <item>
      <title>A</title>
      <link>http://x/1</link>
      <pubDate>Wed, 01 May 2024 10:00:00 GMT</pubDate>
      <enclosure url="http://img/1.jpg" type="image/jpeg"/>
    </item>
  </channel>
</rss>
"""


class FakeHttpClient:
    """Stands in for FeedHttpClient: canned responses keyed by URL.

    A value may be an HttpResponse, an exception instance to raise, or a list
    consumed one element per call.
    """

    def __init__(self, routes: Dict[str, Union[HttpResponse, Exception, list]] = None):
        self.routes = routes or {}
        self.calls: List[tuple] = []

    async def get(self, url, params=None, headers=None):
        self.calls.append((url, params))
        if url not in self.routes:
            return HttpResponse(status=404, text="not found", url=url)
        result = self.routes[url]
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, Exception):
            raise result
        return result


class ScriptedAdapter(AdapterInterface):
    """Adapter returning a scripted sequence of outcomes per source id."""

    def __init__(self, script: Dict[str, list] = None, proxy: Dict[str, FetchOutcome] = None,
                 supports_proxy: bool = False, delays: Dict[str, float] = None):
        self.script = script or {}
        self.proxy = proxy or {}
        self.supports_proxy = supports_proxy
        self.delays = delays or {}
        self.calls: List[str] = []
        self.proxy_calls: List[str] = []

    async def fetch(self, descriptor):
        self.calls.append(descriptor.id)
        delay = self.delays.get(descriptor.id)
        if delay:
            await asyncio.sleep(delay)
        outcomes = self.script.get(descriptor.id, [FetchOutcome()])
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch_via_proxy(self, descriptor):
        self.proxy_calls.append(descriptor.id)
        return self.proxy.get(descriptor.id, await super().fetch_via_proxy(descriptor))


_ids = itertools.count()


def make_article(
    title: str = "Test headline",
    url: str = None,
    published_at: datetime = NOW,
    source_id: str = "test-source",
    category: Category = Category.WORLD,
    **kwargs,
) -> Article:
    n = next(_ids)
    return Article(
        id=kwargs.pop("id", f"{source_id}-1714564800000-{n}"),
        source_id=source_id,
        source_name=kwargs.pop("source_name", "Test Source"),
        title=title,
        canonical_url=url or f"https://example.com/news/{n}",
        category=category,
        published_at=published_at,
        imported_at=published_at,
        **kwargs,
    )


@pytest.fixture
def test_settings():
    """Settings with no backoff and short waits; ignores any local .env."""
    return Settings(
        _env_file=None,
        newsapi_key=None,
        newsdata_key=None,
        retry_backoff_base_seconds=0,
        retry_backoff_max_seconds=0,
        initial_delay_seconds=0,
        seed_timeout_seconds=2,
        ready_wait_seconds=1,
        catalog_backend="memory",
    )


@pytest.fixture
def rss_descriptor():
    return SourceDescriptor(
        id="example-rss",
        name="Example News",
        protocol=SourceProtocol.RSS,
        url="https://example.com/rss.xml",
        category=Category.TECHNOLOGY,
        retries=2,
        timeout_ms=1000,
    )


@pytest.fixture
def fake_http():
    return FakeHttpClient()


@pytest.fixture
def temp_db(tmp_path):
    """Provide a temporary database URL."""
    return f"sqlite:///{tmp_path / 'catalog.db'}"
