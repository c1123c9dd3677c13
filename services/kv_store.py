"""
Key-Value Store - Redis with an in-process fallback

Provides the small redis-py style surface (get / set with ex / delete / ttl /
exists) that the credential store and deposit dedup cache are written
against. When Redis is not configured, or becomes unreachable, the store
degrades to process memory for the rest of the process lifetime: sessions are
then lost on restart, which is accepted in exchange for staying available.
"""

import time
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# Redis TTL sentinels
TTL_MISSING = -2
TTL_PERSISTENT = -1


class KeyValueStore:
    """Interface shared by every backend"""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        raise NotImplementedError

    async def delete(self, *keys: str) -> int:
        raise NotImplementedError

    async def ttl(self, key: str) -> int:
        raise NotImplementedError

    async def exists(self, key: str) -> int:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryKVStore(KeyValueStore):
    """Process-local store with lazy TTL expiry plus a periodic sweep"""

    SWEEP_EVERY_WRITES = 256

    def __init__(self, clock: Callable[[], float] = time.time):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._writes_since_sweep = 0

    def _expired(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return True
        expires_at = entry.get("expires_at")
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return True
        return False

    def _sweep(self) -> None:
        """Drop expired keys nobody reads again (e.g. deposit dedup marks)"""
        now = self._clock()
        expired = [key for key, entry in self._data.items() if entry.get("expires_at") is not None and now >= entry["expires_at"]]
        for key in expired:
            del self._data[key]
        if expired:
            logger.debug(f"🧹 KV_SWEEP: removed {len(expired)} expired keys")

    async def get(self, key: str) -> Optional[str]:
        """Redis GET command"""
        async with self._lock:
            if self._expired(key):
                return None
            return self._data[key]["value"]

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        """Redis SET command"""
        async with self._lock:
            self._writes_since_sweep += 1
            if self._writes_since_sweep >= self.SWEEP_EVERY_WRITES:
                self._writes_since_sweep = 0
                self._sweep()
            entry = {"value": value, "created_at": self._clock()}
            if ex:
                entry["expires_at"] = self._clock() + ex
            self._data[key] = entry
            return True

    async def delete(self, *keys: str) -> int:
        """Redis DEL command"""
        async with self._lock:
            deleted_count = 0
            for key in keys:
                if not self._expired(key):
                    del self._data[key]
                    deleted_count += 1
            return deleted_count

    async def ttl(self, key: str) -> int:
        """Redis TTL command"""
        async with self._lock:
            if self._expired(key):
                return TTL_MISSING
            expires_at = self._data[key].get("expires_at")
            if expires_at is None:
                return TTL_PERSISTENT
            return max(0, int(expires_at - self._clock()))

    async def exists(self, key: str) -> int:
        """Redis EXISTS command"""
        async with self._lock:
            return 0 if self._expired(key) else 1


class RedisKVStore(KeyValueStore):
    """Adapter over redis.asyncio with string responses"""

    def __init__(self, client: redis_asyncio.Redis):
        self._client = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisKVStore":
        return cls(redis_asyncio.from_url(redis_url, decode_responses=True))

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        return bool(await self._client.set(key, value, ex=ex))

    async def delete(self, *keys: str) -> int:
        return int(await self._client.delete(*keys))

    async def ttl(self, key: str) -> int:
        return int(await self._client.ttl(key))

    async def exists(self, key: str) -> int:
        return int(await self._client.exists(key))

    async def close(self) -> None:
        await self._client.aclose()


class FallbackKVStore(KeyValueStore):
    """
    Redis first; on the first Redis failure switch to memory permanently.

    The switch is logged, never raised: callers see a working store either way.
    """

    def __init__(self, primary: KeyValueStore, fallback: Optional[InMemoryKVStore] = None):
        self._primary = primary
        self._fallback = fallback or InMemoryKVStore()
        self._degraded = False

    @property
    def is_degraded(self) -> bool:
        return self._degraded

    def _degrade(self, operation: str, error: Exception) -> None:
        if not self._degraded:
            logger.warning(
                f"⚠️ REDIS_UNAVAILABLE: {operation} failed ({error}). "
                f"Using in-memory storage for the rest of this process."
            )
            self._degraded = True

    async def _call(self, operation: str, *args, **kwargs):
        if not self._degraded:
            try:
                return await getattr(self._primary, operation)(*args, **kwargs)
            except (RedisError, OSError) as e:
                self._degrade(operation, e)
        return await getattr(self._fallback, operation)(*args, **kwargs)

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        return await self._call("set", key, value, ex=ex)

    async def delete(self, *keys: str) -> int:
        return await self._call("delete", *keys)

    async def ttl(self, key: str) -> int:
        return await self._call("ttl", key)

    async def exists(self, key: str) -> int:
        return await self._call("exists", key)

    async def ping(self) -> bool:
        """Startup check; a failed ping degrades to memory before the first real command"""
        return bool(await self._call("ping"))

    async def close(self) -> None:
        try:
            await self._primary.close()
        except (RedisError, OSError) as e:
            logger.debug(f"Redis close failed (non-critical): {e}")


def create_kv_store(redis_url: Optional[str]) -> KeyValueStore:
    """In-memory store when Redis is not configured, else Redis with fallback"""
    if not redis_url:
        logger.info("💾 Using in-memory key-value store")
        return InMemoryKVStore()
    logger.info("💾 Using Redis key-value store with in-memory fallback")
    return FallbackKVStore(RedisKVStore.from_url(redis_url))
