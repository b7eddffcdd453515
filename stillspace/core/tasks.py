"""
Fire-and-forget work with a diagnostic channel.

Cache refills and connectivity listeners must never block or fail the
response path. They run as detached asyncio tasks; any exception is
recorded here and logged instead of propagating.
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Deque, List, Set

from stillspace.utils.logger import get_logger

logger = get_logger("core.tasks")


@dataclass(frozen=True)
class Diagnostic:
    """A failure captured from detached work."""
    label: str
    error: str
    error_type: str
    at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "error": self.error,
            "error_type": self.error_type,
            "at": self.at.isoformat(),
        }


class DetachedTasks:
    """Owns background tasks spawned off the request path."""

    def __init__(self, diagnostics_limit: int = 100):
        self._tasks: Set[asyncio.Task] = set()
        self.diagnostics: Deque[Diagnostic] = deque(maxlen=diagnostics_limit)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def spawn(self, work: Awaitable[Any], label: str) -> asyncio.Task:
        """Schedule work on the running loop and return immediately."""
        task = asyncio.ensure_future(work)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, label))
        return task

    def _finished(self, task: asyncio.Task, label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        self.record(label, error)
        logger.warning(f"Background task '{label}' failed: {error}")

    def record(self, label: str, error: BaseException) -> None:
        """Capture a failure that was handled on the request path."""
        self.diagnostics.append(Diagnostic(
            label=label,
            error=str(error),
            error_type=type(error).__name__,
        ))

    async def wait_idle(self) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        pending: List[asyncio.Task] = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
