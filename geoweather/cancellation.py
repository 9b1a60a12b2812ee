from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from .errors import OperationCancelled

T = TypeVar("T")


class CancelToken:
    """Cooperative cancellation handle shared by one pipeline run.

    ``run`` races an awaitable against the token. When the token fires first
    the awaitable's task is cancelled (closing position subscriptions,
    deadline timers and in-flight HTTP requests through their own cleanup)
    and ``OperationCancelled`` is raised to the caller.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                # Cleanup finishes before control leaves, even when the
                # caller itself was cancelled.
                await asyncio.wait({work})

        if self.cancelled:
            if not work.cancelled():
                work.exception()  # mark a late failure as retrieved
            raise OperationCancelled()
        return work.result()
