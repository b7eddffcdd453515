"""
The offline worker: one version of the caching layer and its event handlers.

Events are plain dataclasses; dispatch() looks the handler up by event
type and awaits it, returning whatever the handler produced:

  InstallEvent            -> int (entries pre-cached)
  ActivateEvent           -> list of deleted generation names
  FetchEvent              -> ExecutionResult
  SyncEvent               -> SyncReport, or None for an unknown tag
  PushEvent               -> Notification, or None without a payload
  NotificationClickEvent  -> opened Client, or None
  MessageEvent            -> None
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from stillspace.cache.store import CacheStorage
from stillspace.clients import Client, ClientRegistry
from stillspace.core.config import StillSpaceConfig
from stillspace.core.tasks import DetachedTasks
from stillspace.fetch.models import RequestInfo
from stillspace.fetch.network import Fetcher
from stillspace.lifecycle import LifecycleManager, WorkerState
from stillspace.notifications import Notification, Notifier, InMemoryNotifier, build_notification, click_target
from stillspace.offline.records import OfflineRecordStore, RecordSyncer, SyncReport
from stillspace.policies.executor import ExecutionResult, PolicyExecutor
from stillspace.policies.strategies import PolicyContext
from stillspace.utils.logger import get_logger

logger = get_logger("worker")

SKIP_WAITING = "SKIP_WAITING"


@dataclass
class InstallEvent:
    pass


@dataclass
class ActivateEvent:
    pass


@dataclass
class FetchEvent:
    request: RequestInfo
    client_id: Optional[str] = None


@dataclass
class SyncEvent:
    tag: str


@dataclass
class PushEvent:
    data: Optional[str] = None


@dataclass
class NotificationClickEvent:
    notification: Notification
    action: Optional[str] = None


@dataclass
class MessageEvent:
    data: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None


class ServiceWorker:
    """
    One version of the worker, built from explicitly injected parts.

    Args:
        config: Worker configuration (cache names, routing, fallbacks)
        fetcher: Network access
        storage: Cache generations
        clients: Open pages; a fresh registry when omitted
        notifier: Notification sink; in-memory when omitted
        tasks: Detached work owner; created from config when omitted
        record_store: Offline meditation records; file from config when omitted
        metrics: Optional MetricsCollector
        version: Version tag; defaults to the configured cache version
    """

    def __init__(
        self,
        config: StillSpaceConfig,
        fetcher: Fetcher,
        storage: CacheStorage,
        clients: Optional[ClientRegistry] = None,
        notifier: Optional[Notifier] = None,
        tasks: Optional[DetachedTasks] = None,
        record_store: Optional[OfflineRecordStore] = None,
        metrics=None,
        version: Optional[str] = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.storage = storage
        self.clients = clients if clients is not None else ClientRegistry()
        self.notifier = notifier if notifier is not None else InMemoryNotifier()
        self.tasks = tasks if tasks is not None else DetachedTasks(config.diagnostics_limit)
        self.version = version or config.cache_version

        self.lifecycle = LifecycleManager(config, storage, fetcher, self.clients, self.version)
        self.executor = PolicyExecutor(
            PolicyContext(config=config, storage=storage, fetcher=fetcher, tasks=self.tasks),
            metrics=metrics,
        )
        if record_store is None:
            record_store = OfflineRecordStore(config.records_path)
        self.syncer = RecordSyncer(record_store, fetcher, config)

        self._handlers: Dict[type, Callable[[Any], Awaitable[Any]]] = {
            InstallEvent: self._on_install,
            ActivateEvent: self._on_activate,
            FetchEvent: self._on_fetch,
            SyncEvent: self._on_sync,
            PushEvent: self._on_push,
            NotificationClickEvent: self._on_notification_click,
            MessageEvent: self._on_message,
        }

    def __repr__(self) -> str:
        return f"<ServiceWorker {self.version} {self.state.value}>"

    @property
    def state(self) -> WorkerState:
        return self.lifecycle.state

    async def dispatch(self, event: Any) -> Any:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"No handler for event type {type(event).__name__}")
        return await handler(event)

    async def handle_fetch(self, request: RequestInfo) -> ExecutionResult:
        return await self.dispatch(FetchEvent(request))

    async def _on_install(self, event: InstallEvent) -> int:
        return await self.lifecycle.install()

    async def _on_activate(self, event: ActivateEvent) -> list:
        return await self.lifecycle.activate()

    async def _on_fetch(self, event: FetchEvent) -> ExecutionResult:
        if self.state != WorkerState.ACTIVE:
            return await self.executor.pass_through(event.request)
        return await self.executor.execute(event.request)

    async def _on_sync(self, event: SyncEvent) -> Optional[SyncReport]:
        if event.tag != self.config.records_sync_tag:
            logger.debug(f"Ignoring sync event with unknown tag {event.tag!r}")
            return None
        return await self.syncer.sync(event.tag)

    async def _on_push(self, event: PushEvent) -> Optional[Notification]:
        if not event.data:
            return None
        notification = build_notification(event.data, self.config)
        await self.notifier.show(notification)
        return notification

    async def _on_notification_click(self, event: NotificationClickEvent) -> Optional[Client]:
        event.notification.close()
        target = click_target(event.action, self.config)
        if target is None:
            return None
        return self.clients.open_window(target, controller=self.version if self.state == WorkerState.ACTIVE else None)

    async def _on_message(self, event: MessageEvent) -> None:
        if event.data.get("type") == SKIP_WAITING:
            logger.info(f"Worker {self.version} asked to skip waiting")
            await self.lifecycle.skip_waiting()

    async def close(self) -> None:
        """Cancel detached work and release the network client."""
        await self.tasks.cancel_all()
        await self.fetcher.aclose()
