# storage/catalog_store.py
# ============================================================================
# TSF SHOP — CATALOG STORE
# ============================================================================
# The whole catalog is one JSON list under "<prefix>products". Reads return
# an empty list when the key is absent (no implicit seeding). Mutations go
# through update(), a compare-and-swap over the whole document.
#
# Mutators work on the entries exactly as stored. Entries a mutation does not
# touch are written back unchanged, including ones the Product model cannot
# read and fields it does not know about.
# ============================================================================

from typing import Any, Callable, List, Optional

import structlog

from schemas.catalog import Product
from storage.kv_store import IKeyValueStore

logger = structlog.get_logger(component="catalog_store")

CatalogMutator = Callable[[List[Any]], List[Any]]


def entry_id(entry: Any) -> Optional[str]:
    """id of a stored catalog entry, None for entries without one."""
    if isinstance(entry, dict):
        value = entry.get("id")
        return str(value) if value not in (None, "") else None
    return None


class CatalogStore:
    """Single-document product catalog."""

    def __init__(self, kv: IKeyValueStore, key_prefix: str = "tsf:"):
        self._kv = kv
        self.key = f"{key_prefix}products"

    @staticmethod
    def _entries(raw: Optional[object]) -> List[Any]:
        return list(raw) if isinstance(raw, list) else []

    @classmethod
    def _parse(cls, raw: Optional[object]) -> List[Product]:
        products = []
        for item in cls._entries(raw):
            try:
                products.append(Product.model_validate(item))
            except ValueError as e:
                logger.warning("catalog_record_skipped", record_id=entry_id(item), error=str(e))
        return products

    @staticmethod
    def _dump(products: List[Product]) -> list:
        return [p.model_dump(mode="json") for p in products]

    async def get(self) -> List[Product]:
        return self._parse(await self._kv.get_json(self.key))

    async def put(self, products: List[Product]) -> None:
        await self._kv.set_json(self.key, self._dump(products))

    async def update(self, mutator: CatalogMutator) -> List[Product]:
        def apply(raw):
            return mutator(self._entries(raw))

        return self._parse(await self._kv.update_json(self.key, apply))

    async def list_active(self) -> List[Product]:
        return [p for p in await self.get() if p.is_active is not False]

    async def seed_if_empty(self, products: List[Product]) -> bool:
        written = await self._kv.set_json_if_absent(self.key, self._dump(products))
        logger.info("catalog_seed", written=written, count=len(products))
        return written
