"""
FIFO of deferred write operations, drained when connectivity returns.

An operation is a zero-argument coroutine function. enqueue() hands back a
future right away; it resolves (or rejects) once the operation has actually
been attempted. Operations leave the queue only after their attempt has
finished, so a drain that gets cancelled mid-operation leaves that
operation at the head for the next drain.
"""
import asyncio
import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, List, Optional

from stillspace.core.errors import QueueClosedError
from stillspace.offline.connectivity import ConnectivityMonitor
from stillspace.utils.logger import get_logger

logger = get_logger("offline.write_queue")

Operation = Callable[[], Awaitable[Any]]


@dataclass
class QueuedOperation:
    seq: int
    operation: Operation
    future: asyncio.Future
    label: str


@dataclass
class DrainReport:
    """Outcome of one drain pass."""
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_offline: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped_offline": self.skipped_offline,
            "errors": list(self.errors),
        }


class OfflineWriteQueue:
    """
    Ordered buffer of mutating operations awaiting connectivity.

    At most one drain pass runs at a time; concurrent drain() calls share it.
    The running pass keeps taking new arrivals until the queue is empty or
    connectivity drops.
    """

    def __init__(self, connectivity: ConnectivityMonitor):
        self.connectivity = connectivity
        self._queue: Deque[QueuedOperation] = deque()
        self._seq = itertools.count(1)
        self._draining: Optional[asyncio.Task] = None
        self._attached = False
        self._closed = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def draining(self) -> bool:
        return self._draining is not None and not self._draining.done()

    def enqueue(self, operation: Operation, label: Optional[str] = None) -> asyncio.Future:
        """
        Append an operation and return the handle its outcome settles.

        Raises:
            QueueClosedError: if the queue has been closed
        """
        if self._closed:
            raise QueueClosedError("Write queue is closed")
        seq = next(self._seq)
        future = asyncio.get_running_loop().create_future()
        self._queue.append(QueuedOperation(seq, operation, future, label or f"op-{seq}"))
        logger.debug(f"Queued {label or f'op-{seq}'} ({len(self._queue)} pending)")
        return future

    async def run_or_enqueue(self, operation: Operation, label: Optional[str] = None) -> Any:
        """Run now when online and nothing is waiting ahead; otherwise queue and wait."""
        if self.connectivity.online and not self._queue and not self.draining:
            return await operation()
        future = self.enqueue(operation, label)
        if self.connectivity.online:
            asyncio.ensure_future(self.drain())
        return await future

    async def drain(self) -> DrainReport:
        """
        Attempt queued operations in order while online.

        A no-op while offline. If a pass is already running, wait for it
        instead of starting another one.
        """
        if not self.connectivity.online:
            logger.info(f"Offline, {len(self._queue)} operation(s) waiting for connectivity")
            return DrainReport(skipped_offline=True)
        if not self.draining:
            self._draining = asyncio.ensure_future(self._drain_loop())
        return await asyncio.shield(self._draining)

    async def _drain_loop(self) -> DrainReport:
        report = DrainReport()
        while self._queue and self.connectivity.online and not self._closed:
            item = self._queue[0]
            report.attempted += 1
            try:
                result = await item.operation()
            except Exception as e:
                self._queue.popleft()
                report.failed += 1
                report.errors.append(f"{item.label}: {e}")
                logger.warning(f"Queued operation {item.label} failed: {e}")
                if not item.future.done():
                    item.future.set_exception(e)
            else:
                self._queue.popleft()
                report.succeeded += 1
                if not item.future.done():
                    item.future.set_result(result)

        if report.attempted:
            logger.info(
                f"Drained {report.attempted} operation(s): "
                f"{report.succeeded} ok, {report.failed} failed, {len(self._queue)} left"
            )
        return report

    def _on_connectivity(self, online: bool):
        if online:
            return self.drain()
        return None

    def attach(self) -> None:
        """Drain automatically whenever connectivity is restored."""
        if not self._attached:
            self.connectivity.add_listener(self._on_connectivity)
            self._attached = True

    def detach(self) -> None:
        if self._attached:
            self.connectivity.remove_listener(self._on_connectivity)
            self._attached = False

    def status(self) -> dict:
        return {
            "length": len(self._queue),
            "online": self.connectivity.online,
            "draining": self.draining,
            "closed": self._closed,
        }

    async def close(self) -> int:
        """
        Stop draining and reject every operation still queued.

        Returns:
            Number of rejected operations
        """
        self._closed = True
        self.detach()
        if self.draining:
            self._draining.cancel()
            try:
                await self._draining
            except asyncio.CancelledError:
                pass
        self._draining = None

        rejected = 0
        while self._queue:
            item = self._queue.popleft()
            if not item.future.done():
                item.future.set_exception(QueueClosedError(
                    "Write queue closed before the operation ran",
                    details={"label": item.label},
                ))
                rejected += 1
        if rejected:
            logger.info(f"Write queue closed, rejected {rejected} pending operation(s)")
        return rejected
