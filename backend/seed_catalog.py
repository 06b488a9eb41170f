#!/usr/bin/env python3
"""
Seed the storefront catalog with the launch products.
Writes nothing when a catalog already exists.
"""
import asyncio
import sys

from config import ShopConfig
from storage.catalog_store import CatalogStore
from storage.kv_store import RedisKeyValueStore
from storage.seed_data import DEFAULT_PRODUCTS


async def seed() -> bool:
    config = ShopConfig.from_env()
    print("=" * 60)
    print("TSF SHOP CATALOG SEED")
    print("=" * 60)
    print(f"   Redis: {config.redis_url.split('@')[-1]}")
    print(f"   Key:   {config.key_prefix}products")

    kv = RedisKeyValueStore.from_url(config.redis_url, timeout_seconds=config.dependency_timeout_seconds)
    try:
        if not await kv.ping():
            print("\n❌ Redis is not reachable")
            return False
        written = await CatalogStore(kv, config.key_prefix).seed_if_empty(DEFAULT_PRODUCTS)
    finally:
        await kv.close()

    if written:
        print(f"\n✅ Seeded {len(DEFAULT_PRODUCTS)} products")
    else:
        print("\nℹ️  Catalog already present, nothing written")
    return True


if __name__ == "__main__":
    result = asyncio.run(seed())
    sys.exit(0 if result else 1)
