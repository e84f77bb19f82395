"""Catalog storage: in-memory snapshots and the SQL backend."""

from .interfaces import CatalogStoreInterface, Page
from .catalog import CatalogStore
from .database import SQLCatalogStore
from .factory import build_catalog_store, get_catalog_store

__all__ = ["CatalogStoreInterface", "Page", "CatalogStore", "SQLCatalogStore",
           "build_catalog_store", "get_catalog_store"]
