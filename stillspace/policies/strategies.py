"""
Caching strategies, one per route class.

Strategy table:

  Class    | Strategy                          | On network failure
  ---------+-----------------------------------+------------------------------------------
  audio    | cache-first, detached refill      | 408 text/plain
  static   | cache-first, no refill            | 503 text/plain
  api      | network-first, cache fallback     | cached copy, else 503 {"offline": true}
  document | cache-first, detached refill      | cached fallback document, else 503
  other    | network-only                      | 503 text/plain

Only GET requests with "basic", status-200, non-redirected, unconsumed
responses are stored. An unreadable cache counts as a miss.
Every stored response is a clone; the original goes back to the caller,
and the store runs detached so the caller never waits on it.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from stillspace.cache.store import CacheStorage
from stillspace.core.config import StillSpaceConfig
from stillspace.core.errors import CacheStorageError, NetworkError
from stillspace.core.tasks import DetachedTasks
from stillspace.fetch.models import RequestInfo, Response, ResponseType
from stillspace.fetch.network import Fetcher
from stillspace.utils.logger import get_logger

logger = get_logger("policies.strategies")

AUDIO_FAILURE_MESSAGE = "Audio file failed to load. Check your connection and try again."
API_OFFLINE_MESSAGE = "Network connection failed, please check your network settings."
OFFLINE_PAGE_MESSAGE = "You are offline and this page has not been saved for offline use."
OFFLINE_ASSET_MESSAGE = "You are offline and this resource is not available."


class Source(str, Enum):
    """Where the response handed back to the page came from."""
    CACHE = "cache"
    NETWORK = "network"
    FALLBACK = "fallback"


@dataclass
class PolicyResult:
    response: Response
    source: Source
    strategy: str


@dataclass
class PolicyContext:
    """Everything a strategy may touch."""
    config: StillSpaceConfig
    storage: CacheStorage
    fetcher: Fetcher
    tasks: DetachedTasks


Strategy = Callable[[RequestInfo, PolicyContext], Awaitable[PolicyResult]]


def is_storable(response: Response) -> bool:
    """Same-origin, exactly 200, not redirected, body still unread."""
    return (
        response.type == ResponseType.BASIC
        and response.status == 200
        and not response.redirected
        and not response.body_used
    )


async def cached_match(request: RequestInfo, ctx: PolicyContext) -> Optional[Response]:
    """Cache lookup that treats an unreadable store as a miss."""
    try:
        return await ctx.storage.match(request)
    except CacheStorageError as e:
        logger.warning(f"Cache read failed for {request.url}, treating as miss: {e.message}")
        ctx.tasks.record(f"cache read {request.url}", e)
        return None


def refill(request: RequestInfo, response: Response, ctx: PolicyContext) -> None:
    """Store a clone into the dynamic generation without blocking the caller."""
    if request.method != "GET":
        return
    copy = response.clone()

    async def _store():
        cache = await ctx.storage.open(ctx.config.dynamic_cache_name)
        await cache.put(request, copy)

    ctx.tasks.spawn(_store(), label=f"refill {request.url}")


def audio_failure_response() -> Response:
    return Response.text_response(AUDIO_FAILURE_MESSAGE, status=408, status_text="Request Timeout")


def api_offline_response() -> Response:
    return Response.json_response(
        {"error": API_OFFLINE_MESSAGE, "offline": True},
        status=503,
        status_text="Service Unavailable",
    )


def offline_text_response(message: str) -> Response:
    return Response.text_response(message, status=503, status_text="Service Unavailable")


async def cache_first_with_refill(request: RequestInfo, ctx: PolicyContext) -> PolicyResult:
    """Audio: serve from cache; on miss fetch, refill in the background, 408 if offline."""
    cached = await cached_match(request, ctx)
    if cached is not None:
        return PolicyResult(cached, Source.CACHE, "cache-first-refill")

    try:
        response = await ctx.fetcher.fetch(request)
    except NetworkError as e:
        logger.info(f"Audio fetch failed for {request.url}: {e.message}")
        return PolicyResult(audio_failure_response(), Source.FALLBACK, "cache-first-refill")

    if is_storable(response):
        refill(request, response, ctx)
    return PolicyResult(response, Source.NETWORK, "cache-first-refill")


async def cache_first_pass_through(request: RequestInfo, ctx: PolicyContext) -> PolicyResult:
    """Static assets: serve from cache, otherwise the live response, no store."""
    cached = await cached_match(request, ctx)
    if cached is not None:
        return PolicyResult(cached, Source.CACHE, "cache-first")

    try:
        response = await ctx.fetcher.fetch(request)
    except NetworkError:
        return PolicyResult(offline_text_response(OFFLINE_ASSET_MESSAGE), Source.FALLBACK, "cache-first")
    return PolicyResult(response, Source.NETWORK, "cache-first")


async def network_first_with_offline_stub(request: RequestInfo, ctx: PolicyContext) -> PolicyResult:
    """API: live response first; cached copy or a JSON offline stub when the network fails."""
    try:
        response = await ctx.fetcher.fetch(request)
    except NetworkError as e:
        logger.info(f"API fetch failed for {request.method} {request.url}: {e.message}")
        cached = await cached_match(request, ctx)
        if cached is not None:
            return PolicyResult(cached, Source.CACHE, "network-first")
        return PolicyResult(api_offline_response(), Source.FALLBACK, "network-first")

    if ctx.config.cache_api_responses and request.method == "GET" and is_storable(response):
        refill(request, response, ctx)
    return PolicyResult(response, Source.NETWORK, "network-first")


async def cache_first_with_offline_fallback(request: RequestInfo, ctx: PolicyContext) -> PolicyResult:
    """Documents: cache, then network with refill, then the cached fallback document."""
    cached = await cached_match(request, ctx)
    if cached is not None:
        return PolicyResult(cached, Source.CACHE, "cache-first-fallback")

    try:
        response = await ctx.fetcher.fetch(request)
    except NetworkError as e:
        logger.info(f"Document fetch failed for {request.url}: {e.message}")
        fallback_request = RequestInfo.for_path(
            ctx.config.origin, ctx.config.offline_fallback_path, destination="document",
        )
        fallback = await cached_match(fallback_request, ctx)
        if fallback is not None:
            return PolicyResult(fallback, Source.FALLBACK, "cache-first-fallback")
        return PolicyResult(offline_text_response(OFFLINE_PAGE_MESSAGE), Source.FALLBACK, "cache-first-fallback")

    if is_storable(response):
        refill(request, response, ctx)
    return PolicyResult(response, Source.NETWORK, "cache-first-fallback")


async def network_only(request: RequestInfo, ctx: PolicyContext) -> PolicyResult:
    """Everything else: straight to the network, never cached."""
    try:
        response = await ctx.fetcher.fetch(request)
    except NetworkError:
        return PolicyResult(offline_text_response(OFFLINE_ASSET_MESSAGE), Source.FALLBACK, "network-only")
    return PolicyResult(response, Source.NETWORK, "network-only")
