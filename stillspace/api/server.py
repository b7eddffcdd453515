"""
FastAPI gateway for Still Space.

Sits in front of the meditation app's API server and plays the role of the
offline worker: every request goes through route classification and the
matching caching policy. Control endpoints live under /__offline.

Usage:
    python -m stillspace.api.server
    # or
    uvicorn stillspace.api.server:app --port 8080
"""
import dataclasses
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi import Response as HTTPResponse

from stillspace.api.models import (
    ConnectivityRequest,
    ConnectivityResponse,
    NotificationClickRequest,
    NotificationClickResponse,
    PushRequest,
    PushResponse,
    RecordRequest,
    RecordResponse,
    SyncRequest,
    UpdateRequest,
    UpdateResponse,
)
from stillspace.cache.store import CacheStorage, create_storage
from stillspace.clients import ClientRegistry
from stillspace.core.config import StillSpaceConfig, get_config
from stillspace.core.errors import InstallError
from stillspace.core.tasks import DetachedTasks
from stillspace.fetch.models import RequestInfo
from stillspace.fetch.network import Fetcher, HttpxFetcher
from stillspace.metrics import MetricsCollector
from stillspace.notifications import InMemoryNotifier
from stillspace.offline.connectivity import ConnectivityMonitor
from stillspace.offline.records import MeditationRecord, OfflineRecordStore
from stillspace.offline.write_queue import OfflineWriteQueue
from stillspace.registration import WorkerRegistration
from stillspace.utils.logger import get_logger
from stillspace.worker import NotificationClickEvent, PushEvent, ServiceWorker, SyncEvent

logger = get_logger("api.server")

CONTROL_PREFIX = "/__offline"
ROUTE_HEADER = "X-Stillspace-Route"
SOURCE_HEADER = "X-Stillspace-Source"

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class Gateway:
    """Everything one gateway process owns, built once and torn down at shutdown."""

    def __init__(
        self,
        config: StillSpaceConfig,
        fetcher: Optional[Fetcher] = None,
        storage: Optional[CacheStorage] = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.storage = storage if storage is not None else create_storage(config.cache_backend, config.redis_namespace)
        self.tasks = DetachedTasks(config.diagnostics_limit)
        self.clients = ClientRegistry()
        self.notifier = InMemoryNotifier()
        self.metrics = MetricsCollector()
        self.record_store = OfflineRecordStore(config.records_path)
        self.connectivity = ConnectivityMonitor(
            online=True,
            tasks=self.tasks,
            probe_url=config.probe_url,
            interval_online=config.probe_interval_online,
            interval_offline=config.probe_interval_offline,
        )
        self.write_queue = OfflineWriteQueue(self.connectivity)
        self.registration = WorkerRegistration(self.clients)
        self.workers = []
        self.install_error: Optional[str] = None

    def new_worker(self, version: str) -> ServiceWorker:
        config = dataclasses.replace(self.config, cache_version=version)
        worker = ServiceWorker(
            config,
            fetcher=self.fetcher,
            storage=self.storage,
            clients=self.clients,
            notifier=self.notifier,
            record_store=self.record_store,
            metrics=self.metrics,
            version=version,
        )
        self.workers.append(worker)
        return worker

    @property
    def worker(self) -> ServiceWorker:
        """The controlling worker, or the latest one when none took control."""
        return self.registration.active or self.workers[-1]

    async def install(self, version: str, accept: bool = True) -> Optional[str]:
        """Register a worker version. Returns the install error message, if any."""
        self.registration.prompt = lambda worker: accept
        try:
            await self.registration.register(self.new_worker(version))
        except InstallError as e:
            logger.warning(f"Worker {version} failed to install, serving network-only: {e.message}")
            self.install_error = e.message
            return e.message
        self.install_error = None
        return None

    async def start(self) -> None:
        if self.fetcher is None:
            self.fetcher = HttpxFetcher(self.config.origin, self.config.upstream_url, self.config.fetch_timeout)
        await self.install(self.config.cache_version)
        self.write_queue.attach()
        self.connectivity.start_monitoring()
        logger.info(f"Gateway ready: {self.config.origin} -> {self.config.upstream_url}")

    async def shutdown(self) -> None:
        await self.connectivity.stop_monitoring()
        await self.write_queue.close()
        await self.tasks.cancel_all()
        for worker in self.workers:
            await worker.tasks.cancel_all()
        await self.fetcher.aclose()
        await self.storage.close()
        logger.info("Gateway stopped")

    def queue_record_sync(self) -> None:
        """Defer a records sync until connectivity allows it."""
        async def _sync():
            report = await self.worker.dispatch(SyncEvent(self.config.records_sync_tag))
            if report is not None and report.remaining:
                raise RuntimeError(f"{report.remaining} record(s) still pending: {'; '.join(report.errors)}")
            return report

        future = self.write_queue.enqueue(_sync, label="records-sync")
        # Outcome lands in the queue's drain report; nothing awaits the handle
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        if self.connectivity.online:
            self.tasks.spawn(self.write_queue.drain(), label="records-sync drain")


def _to_request_info(request: Request, body: bytes, config: StillSpaceConfig) -> RequestInfo:
    path = request.url.path
    query = request.url.query
    url = config.origin.rstrip("/") + path + (f"?{query}" if query else "")
    return RequestInfo(
        url=url,
        method=request.method,
        destination=request.headers.get("sec-fetch-dest", ""),
        headers=dict(request.headers),
        body=body,
    )


def create_app(
    config: Optional[StillSpaceConfig] = None,
    fetcher: Optional[Fetcher] = None,
    storage: Optional[CacheStorage] = None,
) -> FastAPI:
    """Build the gateway app. Collaborators default to what the config describes."""
    config = config or get_config()
    gateway = Gateway(config, fetcher=fetcher, storage=storage)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await gateway.start()
        yield
        await gateway.shutdown()

    app = FastAPI(
        title="Still Space Offline Gateway",
        description="Offline caching layer for the Still Space meditation app",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    @app.get(f"{CONTROL_PREFIX}/status")
    async def get_status():
        """Registration, caches, queue, connectivity and recent background failures."""
        worker = gateway.worker
        diagnostics = [d.to_dict() for w in gateway.workers for d in w.tasks.diagnostics]
        return {
            "registration": gateway.registration.status(),
            "install_error": gateway.install_error,
            "caches": await gateway.storage.keys(),
            "current_caches": worker.config.current_cache_names,
            "write_queue": gateway.write_queue.status(),
            "connectivity": gateway.connectivity.status(),
            "pending_records": len(gateway.record_store),
            "diagnostics": diagnostics,
        }

    @app.get(f"{CONTROL_PREFIX}/metrics")
    async def get_metrics():
        return gateway.metrics.get_summary()

    @app.post(f"{CONTROL_PREFIX}/connectivity", response_model=ConnectivityResponse)
    async def set_connectivity(request: ConnectivityRequest):
        if request.online:
            changed = gateway.connectivity.set_online()
            report = await gateway.write_queue.drain()
            return ConnectivityResponse(online=True, changed=changed, drain=report.to_dict())
        changed = gateway.connectivity.set_offline()
        return ConnectivityResponse(online=False, changed=changed)

    @app.post(f"{CONTROL_PREFIX}/push", response_model=PushResponse)
    async def push(request: PushRequest):
        notification = await gateway.worker.dispatch(PushEvent(request.data))
        if notification is None:
            return PushResponse(shown=False)
        return PushResponse(shown=True, notification=notification.to_dict())

    @app.post(f"{CONTROL_PREFIX}/notifications/click", response_model=NotificationClickResponse)
    async def click_notification(request: NotificationClickRequest):
        shown = gateway.notifier.shown
        try:
            notification = shown[request.index]
        except IndexError:
            raise HTTPException(status_code=404, detail="Notification not found")
        client = await gateway.worker.dispatch(NotificationClickEvent(notification, request.action))
        return NotificationClickResponse(opened=client.url if client else None)

    @app.post(f"{CONTROL_PREFIX}/sync")
    async def trigger_sync(request: SyncRequest):
        report = await gateway.worker.dispatch(SyncEvent(request.tag))
        if report is None:
            raise HTTPException(status_code=404, detail=f"Unknown sync tag: {request.tag}")
        return report.to_dict()

    @app.post(f"{CONTROL_PREFIX}/records", response_model=RecordResponse)
    async def add_record(request: RecordRequest):
        record = gateway.record_store.add(MeditationRecord(**request.model_dump()))
        gateway.queue_record_sync()
        return RecordResponse(id=record.id, pending=len(gateway.record_store))

    @app.get(f"{CONTROL_PREFIX}/records")
    async def list_records():
        return {"records": [r.model_dump(mode="json") for r in gateway.record_store.load()]}

    @app.post(f"{CONTROL_PREFIX}/update", response_model=UpdateResponse)
    async def update(request: UpdateRequest):
        reloads_before = len(gateway.registration.reloads)
        error = None
        if request.version:
            error = await gateway.install(request.version, accept=request.accept)
            active = gateway.registration.active
            accepted = error is None and active is not None and active.version == request.version
        else:
            accepted = await gateway.registration.accept_update()
        return UpdateResponse(
            accepted=accepted,
            registration=gateway.registration.status(),
            reloads=gateway.registration.reloads[reloads_before:],
            error=error,
        )

    @app.api_route("/{path:path}", methods=PROXY_METHODS)
    async def intercept(path: str, request: Request):
        """Every other request goes through the worker."""
        body = await request.body()
        info = _to_request_info(request, body, gateway.config)
        result = await gateway.worker.handle_fetch(info)

        headers = {k: v for k, v in result.response.headers.items() if k != "content-length"}
        headers[ROUTE_HEADER] = result.route_class.value
        headers[SOURCE_HEADER] = result.source.value
        return HTTPResponse(
            content=result.response.read(),
            status_code=result.response.status,
            headers=headers,
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))

    print("=" * 60)
    print("Still Space Offline Gateway")
    print("=" * 60)
    print(f"Status endpoint:  http://localhost:{port}{CONTROL_PREFIX}/status")
    print(f"Metrics endpoint: http://localhost:{port}{CONTROL_PREFIX}/metrics")
    print("")
    print("Environment variables:")
    print("  STILLSPACE_UPSTREAM_URL  - API server requests are forwarded to")
    print("  STILLSPACE_CACHE_BACKEND - 'memory' (default) or 'redis'")
    print("  LOG_LEVEL                - DEBUG, INFO, WARNING")
    print("=" * 60)

    uvicorn.run(app, host="0.0.0.0", port=port)
