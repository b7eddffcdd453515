"""
Worker lifecycle: install (pre-warm), activate (generation cleanup + claim).

    new -> installing -> installed -> activating -> active
                  \\
                   -> redundant   (pre-warm failed, or replaced by a newer version)
"""
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from stillspace.cache.store import CacheStorage
from stillspace.clients import ClientRegistry
from stillspace.core.config import StillSpaceConfig
from stillspace.core.errors import CacheStorageError, InstallError
from stillspace.fetch.models import RequestInfo
from stillspace.fetch.network import Fetcher
from stillspace.utils.logger import get_logger

logger = get_logger("lifecycle")


class WorkerState(str, Enum):
    NEW = "new"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVE = "active"
    REDUNDANT = "redundant"


class LifecycleManager:
    """
    Drives one worker version through install and activate.

    The manager never retries a failed install; whoever hosts the worker
    decides whether and when to try again.
    """

    def __init__(
        self,
        config: StillSpaceConfig,
        storage: CacheStorage,
        fetcher: Fetcher,
        clients: ClientRegistry,
        version: Optional[str] = None,
    ):
        self.config = config
        self.storage = storage
        self.fetcher = fetcher
        self.clients = clients
        self.version = version or config.cache_version
        self.state = WorkerState.NEW
        self.skip_waiting_requested = False
        # Set by the registration so an explicit skip-waiting can promote a waiting worker
        self.skip_waiting_hook: Optional[Callable[[], Awaitable[None]]] = None

    def precache_requests(self) -> List[RequestInfo]:
        return [RequestInfo.for_path(self.config.origin, path) for path in self.config.precache]

    async def install(self) -> int:
        """
        Pre-warm the static generation with the app shell, all or nothing.

        Returns:
            Number of entries stored

        Raises:
            InstallError: if any pre-warm fetch or store fails; the worker becomes redundant
        """
        self.state = WorkerState.INSTALLING
        logger.info(f"Installing worker {self.version} into {self.config.static_cache_name}")
        try:
            try:
                cache = await self.storage.open(self.config.static_cache_name)
            except CacheStorageError as e:
                raise InstallError(f"Cannot open {self.config.static_cache_name}: {e.message}", details=e.details) from e
            count = await cache.add_all(self.precache_requests(), self.fetcher)
        except InstallError as e:
            self.state = WorkerState.REDUNDANT
            logger.error(f"Install of {self.version} failed: {e.message}")
            raise

        self.state = WorkerState.INSTALLED
        logger.info(f"Worker {self.version} installed, {count} asset(s) pre-cached")
        if self.config.skip_waiting_on_install:
            self.skip_waiting_requested = True
        return count

    async def skip_waiting(self) -> None:
        """Ask to activate without waiting for the old version's pages to close."""
        self.skip_waiting_requested = True
        if self.state == WorkerState.INSTALLED and self.skip_waiting_hook is not None:
            await self.skip_waiting_hook()

    async def cleanup(self) -> List[str]:
        """
        Delete every generation under our prefix that is not current.

        Generations outside the prefix belong to someone else and are left alone.
        Running it again right away deletes nothing.
        """
        current = set(self.config.current_cache_names)
        deleted = []
        for name in await self.storage.keys():
            if name in current or not name.startswith(self.config.cache_prefix):
                continue
            if await self.storage.delete(name):
                deleted.append(name)
        return deleted

    async def activate(self) -> List[str]:
        """Clean up stale generations, then take control of every open page."""
        self.state = WorkerState.ACTIVATING
        deleted = await self.cleanup()
        if deleted:
            logger.info(f"Removed stale generations: {', '.join(deleted)}")
        self.state = WorkerState.ACTIVE
        self.clients.claim(self.version)
        return deleted

    def make_redundant(self) -> None:
        self.state = WorkerState.REDUNDANT
