"""Source registry: declarative feed list plus runtime source state."""

import json
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional

import structlog

from ..ingestion.interfaces import (
    Category, SourceDescriptor, SourceProtocol, SourceState, utcnow,
)
from .settings import Settings, settings as default_settings

logger = structlog.get_logger()

# Default config path
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sources.json"

_KEYED_PROTOCOLS = {
    SourceProtocol.HEADLINE_API: "newsapi_key",
    SourceProtocol.STRUCTURED_API: "newsdata_key",
}


# Curated seeds raced by the bootstrap initializer. Keyless, historically reliable.
SEED_SOURCES: List[SourceDescriptor] = [
    SourceDescriptor(
        id="seed-bbc", name="BBC News", protocol=SourceProtocol.RSS,
        url="https://feeds.bbci.co.uk/news/rss.xml", category=Category.WORLD,
        priority=10, retries=1, timeout_ms=10000,
    ),
    SourceDescriptor(
        id="seed-techcrunch", name="TechCrunch", protocol=SourceProtocol.RSS,
        url="https://techcrunch.com/feed/", category=Category.TECHNOLOGY,
        priority=9, retries=1, timeout_ms=10000, exclude_keywords=("sponsored", "advertisement"),
    ),
    SourceDescriptor(
        id="seed-npr", name="NPR News", protocol=SourceProtocol.RSS,
        url="https://feeds.npr.org/1001/rss.xml", category=Category.WORLD,
        priority=8, retries=1, timeout_ms=10000,
    ),
    SourceDescriptor(
        id="seed-google-tech", name="Google News Technology", protocol=SourceProtocol.AGGREGATOR,
        category=Category.TECHNOLOGY, priority=7, retries=1, timeout_ms=10000,
    ),
    SourceDescriptor(
        id="seed-google-business", name="Google News Business", protocol=SourceProtocol.AGGREGATOR,
        category=Category.BUSINESS, priority=7, retries=1, timeout_ms=10000,
    ),
]

# Last resort before synthetic placeholders.
EMERGENCY_SOURCE = SourceDescriptor(
    id="emergency-bbc", name="BBC News", protocol=SourceProtocol.RSS,
    url="https://feeds.bbci.co.uk/news/rss.xml", category=Category.WORLD,
    priority=10, retries=0, timeout_ms=15000,
)


def load_sources(config_path: str = None, config: Settings = None) -> List[SourceDescriptor]:
    """Load source descriptors from a JSON file.

    JSON-API sources without an API key are loaded inactive instead of
    failing the batch later.
    """
    config = config or default_settings
    if config_path is None:
        config_path = config.sources_path or DEFAULT_CONFIG_PATH

    with open(config_path) as f:
        data = json.load(f)

    defaults = data.get("settings", {}).get("defaults", {})
    sources = []
    for source_data in data.get("sources", []):
        protocol = SourceProtocol(source_data["protocol"])

        api_key = source_data.get("api_key")
        if protocol in _KEYED_PROTOCOLS:
            api_key = api_key or getattr(config, _KEYED_PROTOCOLS[protocol])

        active = source_data.get("active", True)
        if protocol in _KEYED_PROTOCOLS and not api_key:
            active = False
        if protocol is SourceProtocol.RSS and not source_data.get("url"):
            logger.warning("rss_source_without_url", source=source_data["id"])
            active = False

        sources.append(SourceDescriptor(
            id=source_data["id"],
            name=source_data.get("name", source_data["id"]),
            protocol=protocol,
            url=source_data.get("url", ""),
            category=Category.coerce(source_data.get("category")),
            active=active,
            priority=source_data.get("priority", defaults.get("priority", 5)),
            retries=source_data.get("retries", defaults.get("retries", config.fetch_max_retries)),
            timeout_ms=source_data.get(
                "timeout_ms",
                defaults.get("timeout_ms", int(config.fetch_timeout_seconds * 1000)),
            ),
            country=source_data.get("country"),
            language=source_data.get("language", defaults.get("language", "en")),
            api_key=api_key,
            keywords=tuple(source_data.get("keywords", [])),
            exclude_keywords=tuple(source_data.get("exclude_keywords", [])),
        ))

    logger.info(
        "sources_loaded",
        total=len(sources),
        active=sum(1 for s in sources if s.active),
        path=str(config_path),
    )
    return sources


class SourceRegistry:
    """Holds descriptors and the mutable per-source state the scheduler owns."""

    def __init__(self, sources: Iterable[SourceDescriptor]):
        self._sources: Dict[str, SourceDescriptor] = {}
        self._state: Dict[str, SourceState] = {}
        self._lock = Lock()
        for source in sources:
            self._sources[source.id] = source
            self._state[source.id] = SourceState(source_id=source.id, active=source.active)

    @classmethod
    def from_config(cls, config_path: str = None, config: Settings = None) -> "SourceRegistry":
        return cls(load_sources(config_path, config))

    def __len__(self) -> int:
        return len(self._sources)

    def all(self) -> List[SourceDescriptor]:
        return list(self._sources.values())

    def get(self, source_id: str) -> Optional[SourceDescriptor]:
        return self._sources.get(source_id)

    def state(self, source_id: str) -> Optional[SourceState]:
        return self._state.get(source_id)

    def active(self) -> List[SourceDescriptor]:
        """Active sources, highest priority first."""
        with self._lock:
            active = [s for s in self._sources.values() if self._state[s.id].active]
        return sorted(active, key=lambda s: s.priority, reverse=True)

    def set_active(self, source_id: str, active: bool) -> bool:
        with self._lock:
            state = self._state.get(source_id)
            if state is None:
                return False
            state.active = active
        logger.info("source_toggled", source=source_id, active=active)
        return True

    def record_fetch(
        self,
        source_id: str,
        articles: int = 0,
        error: str = None,
        fetch_time_ms: int = 0,
    ) -> None:
        """Fetch-complete callback from the resilience wrapper."""
        with self._lock:
            state = self._state.get(source_id)
            if state is None:
                # Ad hoc sources (seeds, emergency) are tracked too.
                state = self._state[source_id] = SourceState(source_id=source_id)
            state.last_run = utcnow()
            state.last_fetch_ms = fetch_time_ms
            state.articles_fetched += articles
            if error:
                state.consecutive_failures += 1
                state.record_error(f"{state.last_run.isoformat()} {error}")
            else:
                state.consecutive_failures = 0

    def mark_scheduled(self, next_run: Optional[datetime]) -> None:
        with self._lock:
            for state in self._state.values():
                if state.active:
                    state.next_run = next_run

    def stats(self) -> List[dict]:
        with self._lock:
            result = []
            for source in self._sources.values():
                result.append({
                    "id": source.id,
                    "name": source.name,
                    "protocol": source.protocol.value,
                    "category": source.category.value,
                    "priority": source.priority,
                    "url": source.url,
                    **self._state[source.id].to_dict(),
                })
        return result
