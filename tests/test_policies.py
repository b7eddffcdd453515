"""
Tests for the per-class caching strategies and the executor.

Cache-first classes must not touch the network on a hit, the API class must
prefer the network, and every network failure must turn into a response.
"""

import asyncio

import pytest

from stillspace.cache.backends import MemoryCacheBackend
from stillspace.cache.store import CacheStorage
from stillspace.core.errors import CacheStorageError
from stillspace.core.tasks import DetachedTasks
from stillspace.fetch.models import RequestInfo, Response, ResponseType
from stillspace.metrics import MetricsCollector
from stillspace.policies import PolicyContext, PolicyExecutor, Source, is_storable
from stillspace.routing import RouteClass

from conftest import ORIGIN, UPSTREAM


def make_executor(config, storage, fetcher, metrics=None):
    tasks = DetachedTasks()
    context = PolicyContext(config=config, storage=storage, fetcher=fetcher, tasks=tasks)
    return PolicyExecutor(context, metrics=metrics), tasks


def audio(path="/sounds/rain.mp3"):
    return RequestInfo.for_path(ORIGIN, path, destination="audio")


def document(path="/timer"):
    return RequestInfo.for_path(ORIGIN, path, destination="document")


class TestStorability:
    def test_basic_200_is_storable(self):
        assert is_storable(Response(b"x", status=200, type=ResponseType.BASIC))

    @pytest.mark.parametrize("response", [
        Response(b"x", status=200, type=ResponseType.OPAQUE),
        Response(b"x", status=200, type=ResponseType.CORS),
        Response(b"x", status=206, type=ResponseType.BASIC),
        Response(b"x", status=404, type=ResponseType.BASIC),
        Response(b"x", status=200, type=ResponseType.BASIC, redirected=True),
    ])
    def test_not_storable(self, response):
        assert not is_storable(response)

    def test_consumed_is_not_storable(self):
        response = Response(b"x", status=200, type=ResponseType.BASIC)
        response.read()
        assert not is_storable(response)


class TestAudio:
    def test_miss_fetches_and_refills(self, config, upstream, fetcher, storage):
        upstream.add("/sounds/rain.mp3", b"RAIN", headers={"content-type": "audio/mpeg"})

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            result = await executor.execute(audio())
            assert result.route_class == RouteClass.AUDIO
            assert result.source == Source.NETWORK
            assert result.response.read() == b"RAIN"

            await tasks.wait_idle()
            stored = await storage.match(audio(), cache_name=config.dynamic_cache_name)
            assert stored.read() == b"RAIN"

        asyncio.run(scenario())

    def test_hit_issues_no_fetch(self, config, upstream, fetcher, storage):
        upstream.add("/sounds/rain.mp3", b"RAIN")

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            await executor.execute(audio())
            await tasks.wait_idle()
            calls = len(upstream.calls)

            upstream.offline = True
            result = await executor.execute(audio())
            assert result.source == Source.CACHE
            assert result.cache_hit
            assert result.response.read() == b"RAIN"
            assert len(upstream.calls) == calls

        asyncio.run(scenario())

    def test_offline_miss_synthesizes_408(self, config, upstream, fetcher, storage):
        upstream.offline = True

        async def scenario():
            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(audio("/audio/guided/body-scan.mp3"))
            assert result.response.status == 408
            assert result.response.status_text == "Request Timeout"
            assert result.response.headers["content-type"].startswith("text/plain")
            assert "Audio file failed to load" in result.response.text()
            assert result.source == Source.FALLBACK

        asyncio.run(scenario())

    def test_error_status_not_stored(self, config, fetcher, storage):
        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            result = await executor.execute(audio("/sounds/missing.mp3"))
            assert result.response.status == 404
            await tasks.wait_idle()
            assert await storage.match(audio("/sounds/missing.mp3")) is None

        asyncio.run(scenario())

    def test_redirected_not_stored(self, config, upstream, fetcher, storage):
        upstream.add("/sounds/old.mp3", status=302, headers={"location": f"{UPSTREAM}/sounds/new.mp3"})
        upstream.add("/sounds/new.mp3", b"NEW")

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            result = await executor.execute(audio("/sounds/old.mp3"))
            assert result.response.redirected
            assert result.response.read() == b"NEW"
            assert result.response.url == f"{ORIGIN}/sounds/new.mp3"
            await tasks.wait_idle()
            assert await storage.match(audio("/sounds/old.mp3")) is None

        asyncio.run(scenario())

    def test_refill_failure_goes_to_diagnostics(self, config, upstream, fetcher):
        class FullBackend(MemoryCacheBackend):
            async def set(self, name, key, entry):
                raise CacheStorageError("quota exceeded")

        upstream.add("/sounds/rain.mp3", b"RAIN")

        async def scenario():
            executor, tasks = make_executor(config, CacheStorage(FullBackend()), fetcher)
            result = await executor.execute(audio())
            assert result.response.read() == b"RAIN"
            await tasks.wait_idle()
            assert len(tasks.diagnostics) == 1
            assert tasks.diagnostics[0].error_type == "CacheStorageError"
            assert "quota exceeded" in tasks.diagnostics[0].error

        asyncio.run(scenario())


class TestStatic:
    def test_miss_passes_through_without_storing(self, config, upstream, fetcher, storage):
        upstream.add("/assets/app.js", "console.log(1)")

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            request = RequestInfo.for_path(ORIGIN, "/assets/app.js", destination="script")
            result = await executor.execute(request)
            assert result.route_class == RouteClass.STATIC
            assert result.response.text() == "console.log(1)"
            await tasks.wait_idle()
            assert await storage.match(request) is None

        asyncio.run(scenario())

    def test_hit_served_from_cache(self, config, upstream, fetcher, storage):
        async def scenario():
            request = RequestInfo.for_path(ORIGIN, "/assets/app.css", destination="style")
            cache = await storage.open(config.static_cache_name)
            await cache.put(request, Response(b"body{}", type=ResponseType.BASIC))
            upstream.offline = True

            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(request)
            assert result.source == Source.CACHE
            assert result.response.read() == b"body{}"
            assert upstream.calls == []

        asyncio.run(scenario())

    def test_offline_miss_still_answers(self, config, upstream, fetcher, storage):
        upstream.offline = True

        async def scenario():
            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(RequestInfo.for_path(ORIGIN, "/logo.png", destination="image"))
            assert result.response.status == 503
            assert result.source == Source.FALLBACK

        asyncio.run(scenario())


class TestApi:
    def test_network_wins_over_stale_cache(self, config, upstream, fetcher, storage):
        upstream.add("/api/trpc/meditation.list", {"sessions": ["fresh"]})

        async def scenario():
            request = RequestInfo.for_path(ORIGIN, "/api/trpc/meditation.list")
            cache = await storage.open(config.dynamic_cache_name)
            await cache.put(request, Response.json_response({"sessions": ["stale"]}))

            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(request)
            assert result.source == Source.NETWORK
            assert result.response.json() == {"sessions": ["fresh"]}

        asyncio.run(scenario())

    def test_offline_serves_cached_copy(self, config, upstream, fetcher, storage):
        async def scenario():
            request = RequestInfo.for_path(ORIGIN, "/api/trpc/meditation.list")
            cache = await storage.open(config.dynamic_cache_name)
            await cache.put(request, Response.json_response({"sessions": ["cached"]}))
            upstream.offline = True

            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(request)
            assert result.source == Source.CACHE
            assert result.response.json() == {"sessions": ["cached"]}

        asyncio.run(scenario())

    def test_offline_without_cache_gives_503_json(self, config, upstream, fetcher, storage):
        upstream.offline = True

        async def scenario():
            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(RequestInfo.for_path(ORIGIN, "/api/trpc/meditation.stats"))
            assert result.response.status == 503
            assert result.response.headers["content-type"] == "application/json"
            body = result.response.json()
            assert body["offline"] is True
            assert isinstance(body["error"], str) and body["error"]

        asyncio.run(scenario())

    def test_offline_mutation_gives_503_json(self, config, upstream, fetcher, storage):
        upstream.offline = True

        async def scenario():
            executor, _ = make_executor(config, storage, fetcher)
            request = RequestInfo.for_path(
                ORIGIN, "/api/trpc/meditation.createSession", method="POST", body=b'{"duration": 60}',
            )
            result = await executor.execute(request)
            assert result.response.status == 503
            assert result.response.json()["offline"] is True

        asyncio.run(scenario())

    def test_no_refill_by_default(self, config, upstream, fetcher, storage):
        upstream.add("/api/trpc/meditation.list", {"sessions": []})

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            request = RequestInfo.for_path(ORIGIN, "/api/trpc/meditation.list")
            await executor.execute(request)
            await tasks.wait_idle()
            assert await storage.match(request) is None

        asyncio.run(scenario())

    def test_refill_when_enabled(self, config, upstream, fetcher, storage):
        config.cache_api_responses = True
        upstream.add("/api/trpc/meditation.list", {"sessions": ["a"]})

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            request = RequestInfo.for_path(ORIGIN, "/api/trpc/meditation.list")
            await executor.execute(request)
            await tasks.wait_idle()

            upstream.offline = True
            result = await executor.execute(request)
            assert result.source == Source.CACHE
            assert result.response.json() == {"sessions": ["a"]}

        asyncio.run(scenario())


class TestDocument:
    def test_miss_fetches_and_refills(self, config, upstream, fetcher, storage):
        upstream.add("/timer", "<html>timer</html>")

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            result = await executor.execute(document())
            assert result.response.text() == "<html>timer</html>"
            await tasks.wait_idle()
            assert await storage.match(document(), cache_name=config.dynamic_cache_name) is not None

        asyncio.run(scenario())

    def test_offline_falls_back_to_cached_root(self, config, upstream, fetcher, storage):
        async def scenario():
            shell = await storage.open(config.static_cache_name)
            await shell.add_all([RequestInfo.for_path(ORIGIN, "/")], fetcher)
            upstream.offline = True

            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(document("/records"))
            assert result.source == Source.FALLBACK
            assert result.response.status == 200
            assert result.response.text() == "<html>home</html>"

        asyncio.run(scenario())

    def test_configurable_fallback_path(self, config, upstream, fetcher, storage):
        config.offline_fallback_path = "/index.html"

        async def scenario():
            shell = await storage.open(config.static_cache_name)
            await shell.add_all([RequestInfo.for_path(ORIGIN, "/index.html")], fetcher)
            upstream.offline = True

            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(document("/breathe"))
            assert result.response.status == 200
            assert result.source == Source.FALLBACK

        asyncio.run(scenario())

    def test_offline_with_nothing_cached_gives_503(self, config, upstream, fetcher, storage):
        upstream.offline = True

        async def scenario():
            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(document("/sounds-mixer"))
            assert result.response.status == 503
            assert result.response.headers["content-type"].startswith("text/plain")

        asyncio.run(scenario())


class TestOther:
    def test_cross_origin_never_cached(self, config, upstream, fetcher, storage):
        upstream.add("https://cdn.example.com/sounds/rain.mp3", b"CDN", headers={"access-control-allow-origin": "*"})

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            request = RequestInfo(url="https://cdn.example.com/sounds/rain.mp3", destination="audio")
            result = await executor.execute(request)
            assert result.route_class == RouteClass.OTHER
            assert result.response.type == ResponseType.CORS
            assert result.response.read() == b"CDN"
            await tasks.wait_idle()
            assert await storage.keys() == []

        asyncio.run(scenario())

    def test_opaque_cross_origin(self, config, upstream, fetcher, storage):
        upstream.add("https://fonts.example.com/a.woff2", b"FONT")

        async def scenario():
            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(RequestInfo(url="https://fonts.example.com/a.woff2", destination="font"))
            assert result.response.type == ResponseType.OPAQUE

        asyncio.run(scenario())

    def test_offline_network_only_answers_503(self, config, upstream, fetcher, storage):
        upstream.offline = True

        async def scenario():
            executor, _ = make_executor(config, storage, fetcher)
            result = await executor.execute(RequestInfo.for_path(ORIGIN, "/robots.txt"))
            assert result.response.status == 503

        asyncio.run(scenario())


class TestMetricsFeed:
    def test_outcomes_recorded_per_class(self, config, upstream, fetcher, storage):
        upstream.add("/sounds/rain.mp3", b"RAIN")
        metrics = MetricsCollector()

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher, metrics=metrics)
            await executor.execute(audio())
            await tasks.wait_idle()
            await executor.execute(audio())
            upstream.offline = True
            await executor.execute(RequestInfo.for_path(ORIGIN, "/api/x"))

        asyncio.run(scenario())
        summary = metrics.get_summary()
        assert summary["routes"]["audio"]["total_requests"] == 2
        assert summary["routes"]["audio"]["cache"] == 1
        assert summary["routes"]["api"]["fallback"] == 1
        assert summary["routes"]["api"]["total_errors"] == 1
        assert summary["cache"]["total_hits"] == 1
        assert summary["cache"]["total_fallbacks"] == 1


class UnreadableBackend(MemoryCacheBackend):
    async def get(self, name, key):
        raise CacheStorageError("Corrupt cache entry: bad json", details={"generation": name, "key": key})


class TestUnreadableCache:
    def _storage(self, config):
        async def build():
            storage = CacheStorage(UnreadableBackend())
            await storage.open(config.static_cache_name)
            return storage
        return asyncio.run(build())

    def test_offline_api_still_gets_json_stub(self, config, upstream, fetcher):
        storage = self._storage(config)
        upstream.offline = True

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            result = await executor.execute(RequestInfo.for_path(ORIGIN, "/api/trpc/meditation.list"))
            assert result.response.status == 503
            assert result.response.json()["offline"] is True
            assert result.source == Source.FALLBACK
            assert tasks.diagnostics[0].error_type == "CacheStorageError"

        asyncio.run(scenario())

    def test_cache_first_read_failure_is_a_miss(self, config, upstream, fetcher):
        storage = self._storage(config)
        upstream.add("/sounds/rain.mp3", b"RAIN")

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            result = await executor.execute(audio())
            assert result.source == Source.NETWORK
            assert result.response.read() == b"RAIN"
            await tasks.wait_idle()
            assert "bad json" in tasks.diagnostics[0].error

        asyncio.run(scenario())

    def test_offline_document_with_unreadable_fallback_gives_503(self, config, upstream, fetcher):
        storage = self._storage(config)
        upstream.offline = True

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            result = await executor.execute(document("/records"))
            assert result.response.status == 503
            assert len(tasks.diagnostics) == 2

        asyncio.run(scenario())


class TestNonGetRequests:
    @pytest.mark.parametrize("method", ["HEAD", "POST"])
    def test_document_not_refilled(self, config, upstream, fetcher, storage, method):
        upstream.add("/timer", "<html>timer</html>")

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            request = RequestInfo.for_path(ORIGIN, "/timer", method=method, destination="document")
            result = await executor.execute(request)
            assert result.source == Source.NETWORK
            assert tasks.in_flight == 0
            await tasks.wait_idle()
            assert list(tasks.diagnostics) == []
            assert await storage.keys() == []

        asyncio.run(scenario())

    def test_audio_head_not_refilled(self, config, upstream, fetcher, storage):
        upstream.add("/sounds/rain.mp3", b"RAIN")

        async def scenario():
            executor, tasks = make_executor(config, storage, fetcher)
            await executor.execute(RequestInfo.for_path(ORIGIN, "/sounds/rain.mp3", method="HEAD", destination="audio"))
            await tasks.wait_idle()
            assert list(tasks.diagnostics) == []
            assert await storage.match(audio()) is None

        asyncio.run(scenario())
