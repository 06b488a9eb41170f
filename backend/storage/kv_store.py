"""
Key-Value Store
===============
JSON document persistence behind one small interface:

- IKeyValueStore: abstract async interface
- InMemoryKeyValueStore: process-local, used by tests and local runs
- RedisKeyValueStore: redis.asyncio backed, one client per process

Every value is a JSON document. Callers never see raw bytes.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError, WatchError

from errors import DependencyUnavailable

logger = structlog.get_logger(component="kv_store")

Mutator = Callable[[Optional[Any]], Any]


# =============================================================================
# INTERFACE
# =============================================================================

class IKeyValueStore(ABC):
    """Async JSON key-value store."""

    @abstractmethod
    async def get_json(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set_json(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def set_json_if_absent(self, key: str, value: Any) -> bool:
        """Write only when key is missing. Returns True if this call wrote."""
        pass

    @abstractmethod
    async def update_json(self, key: str, mutator: Mutator) -> Any:
        """
        Atomic read-modify-write. mutator receives the current value (None
        when absent) and returns the new one; exceptions it raises abort the
        write and propagate.
        """
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass

    async def close(self) -> None:
        return None


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryKeyValueStore(IKeyValueStore):
    """Process-local store. Values are round-tripped through JSON like Redis."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_json(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set_json(self, key: str, value: Any) -> None:
        async with self._lock:
            self._data[key] = json.dumps(value)

    async def set_json_if_absent(self, key: str, value: Any) -> bool:
        async with self._lock:
            if key in self._data:
                return False
            self._data[key] = json.dumps(value)
            return True

    async def update_json(self, key: str, mutator: Mutator) -> Any:
        async with self._lock:
            raw = self._data.get(key)
            current = json.loads(raw) if raw is not None else None
            new_value = mutator(current)
            self._data[key] = json.dumps(new_value)
            return new_value

    async def ping(self) -> bool:
        return True

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


# =============================================================================
# REDIS IMPLEMENTATION
# =============================================================================

class RedisKeyValueStore(IKeyValueStore):
    """
    Redis-backed store.

    - set_json_if_absent -> SET NX
    - update_json -> WATCH / MULTI / EXEC, retried when the key changes
    """

    MAX_CAS_RETRIES = 10

    def __init__(self, client: redis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 10.0) -> "RedisKeyValueStore":
        client = redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
            decode_responses=True,
        )
        logger.info("redis_client_created", url=url.split("@")[-1][:40])
        return cls(client)

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            logger.error("redis_get_error", key=key, error=str(e))
            raise DependencyUnavailable("Key-value store unavailable") from e
        return json.loads(raw) if raw is not None else None

    async def set_json(self, key: str, value: Any) -> None:
        try:
            await self._redis.set(key, json.dumps(value))
        except RedisError as e:
            logger.error("redis_set_error", key=key, error=str(e))
            raise DependencyUnavailable("Key-value store unavailable") from e

    async def set_json_if_absent(self, key: str, value: Any) -> bool:
        try:
            written = await self._redis.set(key, json.dumps(value), nx=True)
        except RedisError as e:
            logger.error("redis_setnx_error", key=key, error=str(e))
            raise DependencyUnavailable("Key-value store unavailable") from e
        return bool(written)

    async def update_json(self, key: str, mutator: Mutator) -> Any:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for attempt in range(1, self.MAX_CAS_RETRIES + 1):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        current = json.loads(raw) if raw is not None else None
                        new_value = mutator(current)
                        pipe.multi()
                        pipe.set(key, json.dumps(new_value))
                        await pipe.execute()
                        return new_value
                    except WatchError:
                        logger.warning("redis_cas_conflict", key=key, attempt=attempt)
                        continue
        except RedisError as e:
            logger.error("redis_update_error", key=key, error=str(e))
            raise DependencyUnavailable("Key-value store unavailable") from e
        raise DependencyUnavailable(f"Too much write contention on {key}")

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._redis.aclose()
