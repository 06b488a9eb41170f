# storage/__init__.py
# ============================================================================
# TSF SHOP — STORAGE MODULE
# ============================================================================
# Key-value persistence, the catalog document and access records
# ============================================================================

from storage.kv_store import (
    IKeyValueStore,
    InMemoryKeyValueStore,
    RedisKeyValueStore,
)
from storage.catalog_store import CatalogStore
from storage.access_store import AccessStore

__all__ = [
    "IKeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "CatalogStore",
    "AccessStore",
]
