"""
Push notifications: build from a push payload, display, handle clicks.
"""
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from stillspace.core.config import StillSpaceConfig
from stillspace.utils.logger import get_logger

logger = get_logger("notifications")

EXPLORE_ACTION = "explore"
CLOSE_ACTION = "close"


@dataclass(frozen=True)
class NotificationAction:
    action: str
    title: str
    icon: str = ""


@dataclass
class Notification:
    title: str
    body: str
    icon: str
    badge: str
    vibrate: List[int] = field(default_factory=lambda: [100, 50, 100])
    data: Dict[str, Any] = field(default_factory=dict)
    actions: List[NotificationAction] = field(default_factory=list)
    closed: bool = False

    def close(self) -> None:
        self.closed = True

    def to_dict(self) -> dict:
        return asdict(self)


def build_notification(text: str, config: StillSpaceConfig) -> Notification:
    """Turn a push payload into the reminder notification."""
    return Notification(
        title=config.notification_title,
        body=text,
        icon=config.notification_icon,
        badge=config.notification_badge,
        data={"dateOfArrival": int(time.time() * 1000), "primaryKey": "1"},
        actions=[
            NotificationAction(EXPLORE_ACTION, "Start meditating", config.notification_icon),
            NotificationAction(CLOSE_ACTION, "Close", "/close.png"),
        ],
    )


def click_target(action: Optional[str], config: StillSpaceConfig) -> Optional[str]:
    """
    Path a click should open, or None when the click only dismisses.

    explore -> the practice page, close -> nothing, anything else -> the app root.
    """
    if action == EXPLORE_ACTION:
        return config.notification_open_path
    if action == CLOSE_ACTION:
        return None
    return "/"


class Notifier:
    """Where displayed notifications go."""

    async def show(self, notification: Notification) -> None:
        raise NotImplementedError


class InMemoryNotifier(Notifier):
    """Keeps every displayed notification and logs it."""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self.shown: List[Notification] = []

    async def show(self, notification: Notification) -> None:
        self.shown.append(notification)
        if len(self.shown) > self.limit:
            del self.shown[: len(self.shown) - self.limit]
        logger.info(f"Notification shown: {notification.title} - {notification.body}")

    def latest(self) -> Optional[Notification]:
        return self.shown[-1] if self.shown else None
