"""
Open pages (clients) and which worker version controls each of them.
"""
import itertools
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from stillspace.utils.logger import get_logger

logger = get_logger("clients")

ControllerChangeListener = Callable[["Client", Optional[str], str], None]


@dataclass
class Client:
    """A page the worker can serve. `controller` is the version tag in charge, if any."""
    id: str
    url: str
    controller: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "url": self.url, "controller": self.controller}


class ClientRegistry:
    """Tracks open pages and hands control of them to a worker version."""

    def __init__(self):
        self._clients: Dict[str, Client] = {}
        self._listeners: List[ControllerChangeListener] = []
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._clients)

    def attach(self, url: str, controller: Optional[str] = None, client_id: Optional[str] = None) -> Client:
        """Register an open page."""
        client = Client(id=client_id or f"client-{next(self._ids)}", url=url, controller=controller)
        self._clients[client.id] = client
        return client

    def detach(self, client_id: str) -> bool:
        return self._clients.pop(client_id, None) is not None

    def get(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)

    def match_all(self) -> List[Client]:
        return list(self._clients.values())

    def add_controllerchange_listener(self, listener: ControllerChangeListener) -> None:
        self._listeners.append(listener)

    def remove_controllerchange_listener(self, listener: ControllerChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def claim(self, version: str) -> int:
        """
        Make `version` the controller of every open page.

        Returns:
            Number of clients whose controller changed
        """
        changed = 0
        for client in self._clients.values():
            previous = client.controller
            if previous == version:
                continue
            client.controller = version
            changed += 1
            for listener in list(self._listeners):
                listener(client, previous, version)
        if changed:
            logger.info(f"Worker {version} claimed {changed} client(s)")
        return changed

    def open_window(self, url: str, controller: Optional[str] = None) -> Client:
        """Open a new page (notification clicks land here)."""
        logger.info(f"Opening window {url}")
        return self.attach(url, controller=controller)
