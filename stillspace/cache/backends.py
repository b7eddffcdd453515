"""
Storage backends for cache generations.

The in-memory backend is the default and lives for the process. The Redis
backend keeps generations across restarts and can be shared by several
gateway processes:

  {namespace}:generations          sorted set, score = creation time
  {namespace}:gen:{name}           hash, field = request key, value = JSON entry

Supports both local Redis and Upstash (cloud-hosted) via UPSTASH_REDIS_URL.
"""
import json
import os
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, List, Optional

from redis.exceptions import RedisError

from stillspace.core.errors import CacheStorageError
from stillspace.fetch.models import StoredResponse


class CacheBackend(ABC):
    """Where generations and their entries are kept."""

    @abstractmethod
    async def list_generations(self) -> List[str]:
        """Generation names in creation order."""

    @abstractmethod
    async def create_generation(self, name: str) -> None:
        """Create the generation if missing (no-op otherwise)."""

    @abstractmethod
    async def has_generation(self, name: str) -> bool:
        ...

    @abstractmethod
    async def delete_generation(self, name: str) -> bool:
        """Drop a generation with all its entries. True if it existed."""

    @abstractmethod
    async def get(self, name: str, key: str) -> Optional[StoredResponse]:
        ...

    @abstractmethod
    async def set(self, name: str, key: str, entry: StoredResponse) -> None:
        ...

    @abstractmethod
    async def delete(self, name: str, key: str) -> bool:
        ...

    @abstractmethod
    async def keys(self, name: str) -> List[str]:
        ...

    async def close(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """Dict-of-dicts backend; insertion order doubles as creation order."""

    def __init__(self):
        self._generations: Dict[str, Dict[str, StoredResponse]] = {}

    async def list_generations(self) -> List[str]:
        return list(self._generations)

    async def create_generation(self, name: str) -> None:
        self._generations.setdefault(name, {})

    async def has_generation(self, name: str) -> bool:
        return name in self._generations

    async def delete_generation(self, name: str) -> bool:
        return self._generations.pop(name, None) is not None

    async def get(self, name: str, key: str) -> Optional[StoredResponse]:
        return self._generations.get(name, {}).get(key)

    async def set(self, name: str, key: str, entry: StoredResponse) -> None:
        if name not in self._generations:
            raise CacheStorageError(f"Cache generation '{name}' does not exist", details={"key": key})
        self._generations[name][key] = entry

    async def delete(self, name: str, key: str) -> bool:
        return self._generations.get(name, {}).pop(key, None) is not None

    async def keys(self, name: str) -> List[str]:
        return list(self._generations.get(name, {}))


@contextmanager
def _storage_errors(action: str):
    """Report Redis failures as CacheStorageError."""
    try:
        yield
    except RedisError as e:
        raise CacheStorageError(f"Redis failed to {action}: {e}", details={"error_type": type(e).__name__}) from e


class RedisCacheBackend(CacheBackend):
    """
    Redis-backed generations (redis.asyncio).

    Connection priority:
    1. UPSTASH_REDIS_URL (cloud-hosted, rediss:// TLS)
    2. REDIS_URL
    3. REDIS_HOST + REDIS_PORT + REDIS_DB_CACHE (local)
    """

    def __init__(self, namespace: str = "stillspace", client=None):
        self.namespace = namespace
        if client is not None:
            self.client = client
        else:
            import redis.asyncio as aioredis

            url = os.getenv("UPSTASH_REDIS_URL") or os.getenv("REDIS_URL")
            if url:
                self.client = aioredis.from_url(
                    url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                )
            else:
                self.client = aioredis.Redis(
                    host=os.getenv("REDIS_HOST", "localhost"),
                    port=int(os.getenv("REDIS_PORT", "6379")),
                    db=int(os.getenv("REDIS_DB_CACHE", "0")),
                    decode_responses=True,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )

    def _index_key(self) -> str:
        return f"{self.namespace}:generations"

    def _gen_key(self, name: str) -> str:
        return f"{self.namespace}:gen:{name}"

    async def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(await self.client.ping())
        except Exception:
            return False

    async def list_generations(self) -> List[str]:
        with _storage_errors("list generations"):
            return list(await self.client.zrange(self._index_key(), 0, -1))

    async def create_generation(self, name: str) -> None:
        # NX keeps the original creation time when the generation already exists
        with _storage_errors(f"create {name}"):
            await self.client.zadd(self._index_key(), {name: time.time()}, nx=True)

    async def has_generation(self, name: str) -> bool:
        with _storage_errors(f"look up {name}"):
            return await self.client.zscore(self._index_key(), name) is not None

    async def delete_generation(self, name: str) -> bool:
        with _storage_errors(f"delete {name}"):
            removed = await self.client.zrem(self._index_key(), name)
            await self.client.delete(self._gen_key(name))
        return bool(removed)

    async def get(self, name: str, key: str) -> Optional[StoredResponse]:
        with _storage_errors(f"read {name}"):
            raw = await self.client.hget(self._gen_key(name), key)
        if not raw:
            return None
        try:
            return StoredResponse.from_dict(json.loads(raw))
        except (ValueError, KeyError) as e:
            raise CacheStorageError(f"Corrupt cache entry: {e}", details={"generation": name, "key": key}) from e

    async def set(self, name: str, key: str, entry: StoredResponse) -> None:
        if not await self.has_generation(name):
            raise CacheStorageError(f"Cache generation '{name}' does not exist", details={"key": key})
        with _storage_errors(f"write {name}"):
            await self.client.hset(self._gen_key(name), key, json.dumps(entry.to_dict()))

    async def delete(self, name: str, key: str) -> bool:
        with _storage_errors(f"delete from {name}"):
            return bool(await self.client.hdel(self._gen_key(name), key))

    async def keys(self, name: str) -> List[str]:
        with _storage_errors(f"list {name}"):
            return list(await self.client.hkeys(self._gen_key(name)))

    async def flush_namespace(self) -> int:
        """Remove every generation in this namespace. Use only for maintenance or tests."""
        names = await self.list_generations()
        for name in names:
            await self.delete_generation(name)
        return len(names)

    async def close(self) -> None:
        await self.client.aclose()
