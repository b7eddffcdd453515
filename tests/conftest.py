"""Pytest configuration for Still Space tests.

The upstream API server is faked with httpx.MockTransport, so no test
needs a network. Flip `upstream.offline = True` to make every fetch fail
the way a dropped connection does.
"""

import json
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from stillspace.cache.store import CacheStorage
from stillspace.core.config import StillSpaceConfig
from stillspace.fetch.network import HttpxFetcher

ORIGIN = "http://app.test"
UPSTREAM = "http://upstream.test"


class FakeUpstream:
    """Routes keyed by path (upstream host) or full URL (any other host)."""

    def __init__(self):
        self.routes: Dict[str, Tuple[int, bytes, Dict[str, str]]] = {}
        self.calls: List[httpx.Request] = []
        self.offline = False
        self.failing: set = set()

    def add(self, key: str, body="", status: int = 200, headers: Optional[Dict[str, str]] = None):
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
            headers = {"content-type": "application/json", **(headers or {})}
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[key] = (status, body, headers or {})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = request.url.path if request.url.host == "upstream.test" else str(request.url)
        if self.offline or key in self.failing:
            raise httpx.ConnectError("connection refused", request=request)
        if key not in self.routes:
            return httpx.Response(404, content=b"not found")
        status, body, headers = self.routes[key]
        return httpx.Response(status, content=body, headers=headers)

    def paths(self) -> List[str]:
        return [c.url.path for c in self.calls]


def make_app_shell(upstream: FakeUpstream) -> FakeUpstream:
    upstream.add("/", "<html>home</html>", headers={"content-type": "text/html"})
    upstream.add("/index.html", "<html>home</html>", headers={"content-type": "text/html"})
    upstream.add("/manifest.json", {"name": "Still Space"})
    return upstream


@pytest.fixture
def config(tmp_path):
    return StillSpaceConfig(
        origin=ORIGIN,
        upstream_url=UPSTREAM,
        records_path=str(tmp_path / "offline_records.json"),
    )


@pytest.fixture
def upstream():
    return make_app_shell(FakeUpstream())


@pytest.fixture
def fetcher(config, upstream):
    return HttpxFetcher(config.origin, config.upstream_url, transport=httpx.MockTransport(upstream.handler))


@pytest.fixture
def storage():
    return CacheStorage()
