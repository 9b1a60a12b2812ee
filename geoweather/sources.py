"""Concrete position sources.

``QueuePositionSource`` is the adapter a platform integration pushes fixes and
errors into. ``ReplayPositionSource`` plays back a recorded, timed sequence of
events, which is how HTTP clients and the CLI hand their positions over.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from .engines.base import PositionSource, PositionSubscription
from .engines.types import PositionEvent

logger = logging.getLogger(__name__)

_CLOSED = object()


class QueueSubscription(PositionSubscription):
    def __init__(
        self, on_close: Callable[[QueueSubscription], None] | None = None
    ) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._finished = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: PositionEvent) -> bool:
        if self._closed or self._finished:
            return False
        self._queue.put_nowait(event)
        return True

    async def __anext__(self) -> PositionEvent:
        if (self._closed or self._finished) and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    def finish(self) -> None:
        """End the stream once the events already queued are read."""
        if self._closed or self._finished:
            return
        self._finished = True
        self._queue.put_nowait(_CLOSED)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Drop undelivered events; nothing is read after close.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)


class QueuePositionSource(PositionSource):
    """Fan pushed events out to every open subscription."""

    name = "queue"

    def __init__(self) -> None:
        self._subscriptions: list[QueueSubscription] = []

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> QueueSubscription:
        subscription = QueueSubscription(on_close=self._forget)
        self._subscriptions.append(subscription)
        logger.debug(
            "geoweather.source.subscribed source=%s active=%s",
            self.name,
            len(self._subscriptions),
        )
        return subscription

    def publish(self, event: PositionEvent) -> int:
        """Deliver ``event`` and return how many subscribers received it."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.deliver(event):
                delivered += 1
        return delivered

    def _forget(self, subscription: QueueSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)


@dataclass(frozen=True)
class TimedEvent:
    offset_s: float
    event: PositionEvent


class _ReplaySubscription(QueueSubscription):
    def __init__(self) -> None:
        super().__init__()
        self._handles: list[asyncio.Handle] = []

    def schedule(
        self,
        loop: asyncio.AbstractEventLoop,
        events: Sequence[TimedEvent],
        close_when_exhausted: bool,
    ) -> None:
        # One callback per offset keeps same-instant events in order.
        batches: dict[float, list[PositionEvent]] = {}
        for timed in events:
            batches.setdefault(max(timed.offset_s, 0.0), []).append(
                timed.event
            )
        offsets = sorted(batches)
        for offset in offsets:
            final = close_when_exhausted and offset == offsets[-1]
            self._handles.append(
                loop.call_later(offset, self._release, batches[offset], final)
            )
        if close_when_exhausted and not offsets:
            self._handles.append(loop.call_soon(self.finish))

    def _release(self, events: list[PositionEvent], final: bool) -> None:
        for event in events:
            self.deliver(event)
        if final:
            self.finish()

    def close(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        super().close()


class ReplayPositionSource(PositionSource):
    """Replay ``TimedEvent`` items relative to the moment of subscription.

    The stream stays open after the last event, as a live position service
    would, unless ``close_when_exhausted`` is set.
    """

    name = "replay"

    def __init__(
        self,
        events: Iterable[TimedEvent],
        *,
        close_when_exhausted: bool = False,
    ) -> None:
        self.events = sorted(events, key=lambda timed: timed.offset_s)
        self.close_when_exhausted = close_when_exhausted

    def subscribe(self) -> PositionSubscription:
        subscription = _ReplaySubscription()
        subscription.schedule(
            asyncio.get_running_loop(),
            self.events,
            self.close_when_exhausted,
        )
        return subscription
