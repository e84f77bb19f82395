"""Shared async HTTP client for all adapters."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp
import structlog

from ..config.settings import Settings, settings as default_settings

logger = structlog.get_logger()


@dataclass
class HttpResponse:
    """A fully-read response body."""
    status: int
    text: str
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.text)


class FeedHttpClient:
    """aiohttp session wrapper with a browser-like User-Agent.

    Many feed hosts reject clients that do not identify as a browser.
    """

    def __init__(self, config: Settings = None, session: aiohttp.ClientSession = None):
        self.config = config or default_settings
        self.session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

    async def __aenter__(self):
        if self.session is None:
            # No total timeout here: ResilientFetcher bounds each attempt by the source's timeout_ms
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.config.fetch_timeout_seconds),
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": "application/rss+xml, application/atom+xml, application/xml, "
                              "text/xml, application/json;q=0.9, */*;q=0.8",
                },
            )
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    async def get(
        self,
        url: str,
        params: Dict[str, Any] = None,
        headers: Dict[str, str] = None,
    ) -> HttpResponse:
        """GET ``url`` and read the whole body.

        Network errors (aiohttp.ClientError, asyncio.TimeoutError) propagate to
        the adapter, which turns them into a failure outcome.
        """
        if self.session is None:
            raise RuntimeError("FeedHttpClient used outside of 'async with'")
        if params:
            params = {k: str(v) for k, v in params.items() if v is not None and v != ""}
        async with self.session.get(url, params=params or None, headers=headers) as response:
            text = await response.text(errors="replace")
            return HttpResponse(
                status=response.status,
                text=text,
                url=str(response.url),
                headers=dict(response.headers),
            )
