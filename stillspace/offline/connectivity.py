"""
Process-wide online/offline state with transition listeners.

The state changes only through transition events (set_online / set_offline,
or a probe result). Listeners fire once per actual change; coroutine
listeners run detached so a slow one never holds up the transition.
"""
import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional

import httpx

from stillspace.core.tasks import DetachedTasks
from stillspace.utils.logger import get_logger

logger = get_logger("offline.connectivity")

ConnectivityListener = Callable[[bool], Any]


@dataclass
class ConnectivityState:
    online: bool
    last_change: Optional[datetime] = None
    last_check: Optional[datetime] = None
    transitions: int = 0


class ConnectivityMonitor:
    """
    Online/offline flag plus listeners.

    Usage:
        monitor = ConnectivityMonitor(online=False, tasks=tasks)
        monitor.add_listener(on_change)      # on_change(online: bool)
        monitor.set_online()                 # fires on_change(True)
    """

    PROBE_TIMEOUT = 5.0

    def __init__(
        self,
        online: bool = True,
        tasks: Optional[DetachedTasks] = None,
        probe_url: Optional[str] = None,
        interval_online: float = 30.0,
        interval_offline: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._state = ConnectivityState(online=online)
        self._listeners: List[ConnectivityListener] = []
        self.tasks = tasks if tasks is not None else DetachedTasks()
        self.probe_url = probe_url
        self.interval_online = interval_online
        self.interval_offline = interval_offline
        self._client = client
        self._monitor_task: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        return self._state.online

    @property
    def state(self) -> ConnectivityState:
        return self._state

    def add_listener(self, listener: ConnectivityListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ConnectivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_online(self) -> bool:
        return self._transition(True)

    def set_offline(self) -> bool:
        return self._transition(False)

    def _transition(self, online: bool) -> bool:
        """Apply a transition event. Returns True if the state actually changed."""
        if self._state.online == online:
            return False
        self._state.online = online
        self._state.last_change = datetime.now()
        self._state.transitions += 1
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self._notify(online)
        return True

    def _notify(self, online: bool) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(online)
            except Exception as e:
                logger.warning(f"Connectivity listener {listener!r} failed: {e}")
                continue
            if inspect.isawaitable(result):
                self.tasks.spawn(result, label=f"connectivity listener ({'online' if online else 'offline'})")

    async def probe(self) -> bool:
        """
        Check reachability of the probe URL and apply the result as a transition.

        Without a probe URL the current state is kept.
        """
        if not self.probe_url:
            return self.online

        client = self._client or httpx.AsyncClient(timeout=self.PROBE_TIMEOUT)
        try:
            resp = await client.get(self.probe_url)
            reachable = resp.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Probe of {self.probe_url} failed: {e}")
            reachable = False
        finally:
            if self._client is None:
                await client.aclose()

        self._state.last_check = datetime.now()
        self._transition(reachable)
        return reachable

    def start_monitoring(self) -> None:
        """Start periodic probing (shorter interval while offline)."""
        if not self.probe_url:
            return
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.ensure_future(self._monitoring_loop())

    async def stop_monitoring(self) -> None:
        if self._monitor_task is None:
            return
        self._monitor_task.cancel()
        try:
            await self._monitor_task
        except asyncio.CancelledError:
            pass
        self._monitor_task = None

    async def _monitoring_loop(self) -> None:
        while True:
            await self.probe()
            interval = self.interval_online if self.online else self.interval_offline
            await asyncio.sleep(interval)

    def status(self) -> dict:
        """Display-friendly status."""
        return {
            "online": self._state.online,
            "last_change": self._state.last_change.isoformat() if self._state.last_change else None,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "transitions": self._state.transitions,
            "monitoring": self._monitor_task is not None and not self._monitor_task.done(),
        }
