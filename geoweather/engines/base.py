from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from .types import PositionEvent


class PositionSubscription(ABC):
    """Live subscription to a position stream.

    Iterating yields fixes and errors in delivery order until the stream is
    closed, either by the platform or by ``close``.
    """

    def __aiter__(self) -> AsyncIterator[PositionEvent]:
        return self

    @abstractmethod
    async def __anext__(self) -> PositionEvent:
        """Return the next event; ``StopAsyncIteration`` once closed."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivery. Safe to call more than once."""


class PositionSource(ABC):
    """Abstract base for platform position services."""

    name: str

    @abstractmethod
    def subscribe(self) -> PositionSubscription:
        """Start a continuous stream of position updates."""
