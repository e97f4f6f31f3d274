"""
Cancellation token threaded through the orchestrator's waits
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

from build_healer.errors import CycleCancelledError

T = TypeVar("T")


class CancellationToken:
    """Tripped once by cancel(); every wait checked against it wakes early"""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            logging.warning(f"Cancellation requested: {reason}")
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CycleCancelledError(self.reason or "cancelled")

    async def sleep(self, seconds: float) -> None:
        """asyncio.sleep that raises CycleCancelledError as soon as cancel() is called"""
        self.raise_if_cancelled()
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await something, abandoning it if the token trips first"""
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work in done:
            return work.result()
        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        raise CycleCancelledError(self.reason or "cancelled")
