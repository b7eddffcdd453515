"""
Named, versioned stores of HTTP responses.

CacheStorage is the registry of generations (what a browser exposes as
`caches`), CacheGeneration is one named generation. Entries are written
whole and never patched; a later put for the same request replaces the
entry (last write wins).
"""
import asyncio
from typing import Iterable, List, Optional

from stillspace.cache.backends import CacheBackend, MemoryCacheBackend, RedisCacheBackend
from stillspace.core.errors import CacheStorageError, InstallError, NetworkError
from stillspace.fetch.models import RequestInfo, Response, StoredResponse, strip_fragment
from stillspace.fetch.network import Fetcher
from stillspace.utils.logger import get_logger

logger = get_logger("cache.store")


def request_key(request: RequestInfo) -> str:
    """Cache key for a request: method plus URL without fragment."""
    return f"{request.method} {strip_fragment(request.url)}"


class CacheGeneration:
    """One named generation of cached responses."""

    def __init__(self, name: str, backend: CacheBackend):
        self.name = name
        self._backend = backend

    def __repr__(self) -> str:
        return f"<CacheGeneration {self.name}>"

    async def match(self, request: RequestInfo) -> Optional[Response]:
        """Return a fresh copy of the stored response for this request, or None."""
        entry = await self._backend.get(self.name, request_key(request))
        if entry is None or not entry.matches(request):
            return None
        return entry.to_response()

    async def put(self, request: RequestInfo, response: Response) -> None:
        """
        Store a response for a request.

        The response is snapshotted, not consumed, so the caller may still
        hand it (or its clone) to someone else.
        """
        if request.method != "GET":
            raise CacheStorageError(
                "Only GET requests can be cached",
                details={"method": request.method, "url": request.url},
            )
        entry = StoredResponse.capture(request, response)
        await self._backend.set(self.name, request_key(request), entry)
        logger.debug(f"[{self.name}] stored {request.url} ({len(entry.body)} bytes)")

    async def delete(self, request: RequestInfo) -> bool:
        return await self._backend.delete(self.name, request_key(request))

    async def keys(self) -> List[str]:
        return await self._backend.keys(self.name)

    async def add_all(self, requests: Iterable[RequestInfo], fetcher: Fetcher) -> int:
        """
        Fetch every request and store all of them, or none.

        Raises:
            InstallError: if any fetch fails or comes back non-ok
        """
        requests = list(requests)
        try:
            responses = await asyncio.gather(*(fetcher.fetch(r) for r in requests))
        except NetworkError as e:
            raise InstallError(f"Pre-warm fetch failed: {e.message}", details=e.details) from e

        for request, response in zip(requests, responses):
            if not response.ok:
                raise InstallError(
                    f"Pre-warm fetch returned {response.status}",
                    details={"url": request.url, "status": response.status},
                )

        written: List[RequestInfo] = []
        try:
            for request, response in zip(requests, responses):
                await self.put(request, response)
                written.append(request)
        except CacheStorageError as e:
            await self._rollback(written)
            raise InstallError(f"Pre-warm store failed: {e.message}", details=e.details) from e
        return len(requests)

    async def _rollback(self, written: List[RequestInfo]) -> None:
        for request in written:
            try:
                await self.delete(request)
            except CacheStorageError as e:
                logger.warning(f"[{self.name}] could not roll back {request.url}: {e.message}")


class CacheStorage:
    """Registry of cache generations over a single backend."""

    def __init__(self, backend: Optional[CacheBackend] = None):
        self.backend = backend if backend is not None else MemoryCacheBackend()

    async def open(self, name: str) -> CacheGeneration:
        """Return the named generation, creating it if needed."""
        await self.backend.create_generation(name)
        return CacheGeneration(name, self.backend)

    async def has(self, name: str) -> bool:
        return await self.backend.has_generation(name)

    async def keys(self) -> List[str]:
        """Generation names in creation order."""
        return await self.backend.list_generations()

    async def delete(self, name: str) -> bool:
        deleted = await self.backend.delete_generation(name)
        if deleted:
            logger.info(f"Deleted cache generation {name}")
        return deleted

    async def match(self, request: RequestInfo, cache_name: Optional[str] = None) -> Optional[Response]:
        """
        Look a request up in one generation, or in all of them in creation order.
        """
        if cache_name is not None:
            if not await self.has(cache_name):
                return None
            return await CacheGeneration(cache_name, self.backend).match(request)

        for name in await self.keys():
            found = await CacheGeneration(name, self.backend).match(request)
            if found is not None:
                return found
        return None

    async def close(self) -> None:
        await self.backend.close()


def create_storage(backend: str = "memory", namespace: str = "stillspace") -> CacheStorage:
    """Build a CacheStorage for the configured backend name."""
    if backend == "memory":
        return CacheStorage(MemoryCacheBackend())
    if backend == "redis":
        return CacheStorage(RedisCacheBackend(namespace=namespace))
    raise ValueError(f"Unknown cache backend: {backend!r} (expected 'memory' or 'redis')")
