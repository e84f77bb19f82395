"""Factory functions to create catalog store instances.

The backend comes from ``NEWSWIRE_CATALOG_BACKEND``:
- memory (default): process-local snapshot store
- sql: SQLAlchemy store at ``NEWSWIRE_DATABASE_URL`` (SQLite for local development)
"""

from functools import lru_cache

import structlog

from ..config.settings import Settings, settings
from .interfaces import CatalogStoreInterface

logger = structlog.get_logger()


def build_catalog_store(config: Settings) -> CatalogStoreInterface:
    """Create a new catalog store for the backend named in ``config``."""
    backend = config.catalog_backend.strip().lower()

    if backend == "sql":
        from .database import SQLCatalogStore
        logger.info("using_sql_catalog", url=config.database_url[:40] + "...")
        return SQLCatalogStore(config.database_url)
    if backend != "memory":
        raise ValueError(f"unknown catalog backend: {config.catalog_backend!r}")

    from .catalog import CatalogStore
    logger.info("using_memory_catalog")
    return CatalogStore()


@lru_cache(maxsize=1)
def get_catalog_store() -> CatalogStoreInterface:
    """Get the configured catalog store (one per process)."""
    return build_catalog_store(settings)


def clear_cache():
    """Clear cached instances (useful for testing)."""
    get_catalog_store.cache_clear()
