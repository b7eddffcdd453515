"""
Page-side registration: installs worker versions and runs the update flow.

When a new version finishes installing while an older one still controls
the pages, the update prompt is asked. Accepting posts SKIP_WAITING to the
new worker, which activates it and claims every page. Each resulting
controller change reloads the page, so no page keeps running half on the
old generation and half on the new one.
"""
import inspect
from typing import Any, Callable, List, Optional

from stillspace.clients import Client, ClientRegistry
from stillspace.core.errors import InstallError
from stillspace.lifecycle import WorkerState
from stillspace.utils.logger import get_logger
from stillspace.worker import SKIP_WAITING, ActivateEvent, InstallEvent, MessageEvent, ServiceWorker

logger = get_logger("registration")

UpdatePrompt = Callable[[ServiceWorker], Any]
ReloadCallback = Callable[[Client], None]


class WorkerRegistration:
    """
    Tracks the installing, waiting and active worker for one scope.

    Args:
        clients: Registry of open pages shared with every worker version
        prompt: Asked when an update is ready; truthy (or awaitable of truthy) accepts
        on_reload: Called for each page that must reload after a controller change
    """

    def __init__(
        self,
        clients: ClientRegistry,
        prompt: Optional[UpdatePrompt] = None,
        on_reload: Optional[ReloadCallback] = None,
    ):
        self.clients = clients
        self.prompt = prompt
        self.on_reload = on_reload
        self.installing: Optional[ServiceWorker] = None
        self.waiting: Optional[ServiceWorker] = None
        self.active: Optional[ServiceWorker] = None
        self.reloads: List[str] = []
        clients.add_controllerchange_listener(self._on_controllerchange)

    @property
    def controller(self) -> Optional[ServiceWorker]:
        return self.active

    async def register(self, worker: ServiceWorker) -> ServiceWorker:
        """
        Install a worker version and activate it when allowed.

        Raises:
            InstallError: if pre-warming failed (the worker is left redundant)
        """
        if worker.clients is not self.clients:
            raise ValueError("Worker must share the registration's client registry")

        worker.lifecycle.skip_waiting_hook = lambda: self._promote(worker)
        self.installing = worker
        try:
            await worker.dispatch(InstallEvent())
        except InstallError:
            logger.error(f"Registration of worker {worker.version} failed")
            raise
        finally:
            self.installing = None

        if self.active is None:
            await self._promote(worker)
            return worker

        self.waiting = worker
        logger.info(f"Worker {worker.version} installed, {self.active.version} still in control")
        if await self._ask(worker):
            await self.accept_update()
        elif worker.lifecycle.skip_waiting_requested:
            await self._promote(worker)
        return worker

    async def _ask(self, worker: ServiceWorker) -> bool:
        if self.prompt is None:
            return False
        answer = self.prompt(worker)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    async def accept_update(self) -> bool:
        """Let the waiting worker take over. False if nothing is waiting."""
        worker = self.waiting
        if worker is None:
            return False
        await worker.dispatch(MessageEvent({"type": SKIP_WAITING}))
        return True

    async def _promote(self, worker: ServiceWorker) -> None:
        if worker.state != WorkerState.INSTALLED:
            return
        if self.waiting is worker:
            self.waiting = None
        previous = self.active
        await worker.dispatch(ActivateEvent())
        self.active = worker
        if previous is not None and previous is not worker:
            previous.lifecycle.make_redundant()
            logger.info(f"Worker {previous.version} replaced by {worker.version}")

    def _on_controllerchange(self, client: Client, previous: Optional[str], current: str) -> None:
        logger.info(f"Controller of {client.id} changed {previous or '-'} -> {current}, reloading")
        self.reloads.append(client.id)
        if self.on_reload is not None:
            self.on_reload(client)

    def status(self) -> dict:
        def describe(worker: Optional[ServiceWorker]):
            if worker is None:
                return None
            return {"version": worker.version, "state": worker.state.value}

        return {
            "installing": describe(self.installing),
            "waiting": describe(self.waiting),
            "active": describe(self.active),
            "clients": [c.to_dict() for c in self.clients.match_all()],
        }
