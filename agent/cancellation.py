"""
Cancellation token shared by the loop, the scheduler and the front end.
"""

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)


class OperationCancelled(Exception):
    """Raised when a raced operation loses to the cancellation token"""
    pass


class CancellationToken:
    """One-shot cancel signal. cancel() is safe from any thread or signal handler."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        logger.info("Cancellation requested")
        for cb in callbacks:
            try:
                cb()
            except Exception as e:
                logger.debug(f"Cancel callback failed: {e}")

    def add_callback(self, cb: Callable[[], None]) -> None:
        """Run cb on cancel, or immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)
                return
        cb()

    def remove_callback(self, cb: Callable[[], None]) -> None:
        with self._lock:
            if cb in self._callbacks:
                self._callbacks.remove(cb)

    async def wait(self) -> None:
        """Suspend until cancel() is called."""
        loop = asyncio.get_running_loop()
        fut = loop.create_future()

        def _wake():
            loop.call_soon_threadsafe(lambda: fut.done() or fut.set_result(None))

        self.add_callback(_wake)
        try:
            await fut
        finally:
            self.remove_callback(_wake)


async def race_cancel(aw: Awaitable[Any], token: Optional[CancellationToken]) -> Any:
    """Await aw unless the token fires first, in which case aw is cancelled
    and OperationCancelled is raised."""
    if token is None:
        return await aw
    if token.cancelled:
        if asyncio.iscoroutine(aw):
            aw.close()
        raise OperationCancelled()
    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()
    if task.done():
        return task.result()
    task.cancel()
    raise OperationCancelled()
