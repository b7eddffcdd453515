"""
Network access for the worker.

HttpxFetcher forwards same-origin requests to the upstream API server and
passes cross-origin requests straight through. Transport failures become
NetworkError so the policy layer has a single thing to catch.
"""
from typing import Optional, Protocol
from urllib.parse import urlsplit

import httpx

from stillspace.core.errors import NetworkError
from stillspace.fetch.models import RequestInfo, Response, ResponseType, origin_of
from stillspace.utils.logger import get_logger

logger = get_logger("fetch.network")

# Hop-by-hop and length headers are recomputed by whoever sends the bytes on
_DROPPED_RESPONSE_HEADERS = {
    "connection", "keep-alive", "transfer-encoding", "content-encoding",
    "content-length", "upgrade", "proxy-authenticate", "trailer", "te",
}
_DROPPED_REQUEST_HEADERS = {"host", "content-length", "connection", "accept-encoding"}


class Fetcher(Protocol):
    """Anything that can turn a RequestInfo into a Response."""

    async def fetch(self, request: RequestInfo) -> Response:
        ...

    async def aclose(self) -> None:
        ...


class HttpxFetcher:
    """
    Fetcher backed by httpx.AsyncClient.

    Args:
        origin: Origin the pages are served from (same-origin test)
        upstream_url: Base URL same-origin requests are forwarded to
        timeout: Seconds before a fetch is abandoned, None for no limit
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        origin: str,
        upstream_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.origin = origin_of(origin)
        self.upstream_url = upstream_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    def _target_url(self, request: RequestInfo) -> str:
        if request.origin != self.origin:
            return request.url
        return self.upstream_url + request.path_with_query

    async def fetch(self, request: RequestInfo) -> Response:
        same_origin = request.origin == self.origin
        url = self._target_url(request)
        headers = {k: v for k, v in request.headers.items() if k not in _DROPPED_REQUEST_HEADERS}
        try:
            resp = await self._client.request(
                request.method,
                url,
                headers=headers,
                content=request.body or None,
            )
        except httpx.TransportError as e:
            logger.debug(f"Fetch failed for {request.method} {request.url}: {e}")
            raise NetworkError(
                f"Network request failed: {e.__class__.__name__}",
                details={"url": request.url, "method": request.method},
            ) from e

        return Response(
            body=resp.content,
            status=resp.status_code,
            status_text=resp.reason_phrase,
            headers={k: v for k, v in resp.headers.items() if k.lower() not in _DROPPED_RESPONSE_HEADERS},
            type=self._response_type(same_origin, resp),
            url=self._public_url(request, resp) if same_origin else str(resp.url),
            redirected=bool(resp.history),
        )

    def _response_type(self, same_origin: bool, resp: httpx.Response) -> ResponseType:
        if same_origin:
            return ResponseType.BASIC
        if resp.headers.get("access-control-allow-origin"):
            return ResponseType.CORS
        return ResponseType.OPAQUE

    def _public_url(self, request: RequestInfo, resp: httpx.Response) -> str:
        """Map the upstream URL of a (possibly redirected) response back onto the page origin."""
        if not resp.history:
            return request.url
        final = urlsplit(str(resp.url))
        query = f"?{final.query}" if final.query else ""
        return f"{self.origin}{final.path}{query}"

    async def aclose(self) -> None:
        await self._client.aclose()
