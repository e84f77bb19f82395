"""Application settings with environment variable support."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pathlib import Path


# Compute base_dir at module level
_BASE_DIR = Path(__file__).parent.parent.parent.resolve()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="NEWSWIRE_",  # NEWSWIRE_NEWSAPI_KEY, NEWSWIRE_CATALOG_BACKEND, etc.
    )

    # Paths
    base_dir: Path = _BASE_DIR
    data_dir: Path = _BASE_DIR / "data"
    sources_path: Optional[Path] = None  # None = bundled sources.json

    # Storage
    catalog_backend: str = "memory"  # "memory" or "sql"
    database_url: str = f"sqlite:///{_BASE_DIR / 'data' / 'newswire.db'}"

    # API keys (absence deactivates the matching sources)
    newsapi_key: Optional[str] = None
    newsdata_key: Optional[str] = None

    # Fetching
    user_agent: str = "Mozilla/5.0 (compatible; Newswire/1.0; +https://newswire.invalid/bot)"
    fetch_timeout_seconds: float = 12.0
    fetch_max_retries: int = 2
    retry_backoff_base_seconds: float = 2.0
    retry_backoff_max_seconds: float = 30.0
    max_concurrent_fetches: int = 8
    max_items_per_feed: int = 50
    excerpt_max_length: int = 200
    proxy_fetch_url: str = "https://api.allorigins.win/get"
    newsapi_url: str = "https://newsapi.org/v2/top-headlines"
    newsdata_url: str = "https://newsdata.io/api/1/news"
    aggregator_url: str = "https://news.google.com/rss"

    # Deduplication
    near_duplicate_window_seconds: float = 60.0

    # Freshness badges
    very_recent_minutes: int = 60
    recent_minutes: int = 180
    today_minutes: int = 1440

    # Scheduling
    refresh_interval_minutes: float = 10.0
    initial_delay_seconds: float = 2.0
    stats_log_interval_minutes: float = 60.0
    force_refresh_on_start: bool = False

    # Bootstrap
    seed_timeout_seconds: float = 30.0
    ready_wait_seconds: float = 10.0

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8000


settings = Settings()
