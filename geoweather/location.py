"""Accuracy-driven, deadline-bounded position acquisition."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Final

from django.conf import settings

from .cancellation import CancelToken
from .engines.base import PositionSource, PositionSubscription
from .engines.types import (
    Accepted,
    AcquisitionOutcome,
    Cancelled,
    Failed,
    GeoError,
    GeoErrorKind,
    PositionEvent,
    PositionFix,
)
from .errors import OperationCancelled
from .metrics import location_events_total, location_outcomes_total

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_M: Final[float] = float(
    getattr(settings, "LOCATION_ACCURACY_THRESHOLD_M", 100.0)
)
DEFAULT_DEADLINE_S: Final[float] = float(
    getattr(settings, "LOCATION_DEADLINE_S", 15.0)
)

REFINE_FAILED_MESSAGE: Final[str] = "Unable to refine your location."


@dataclass
class AcquisitionSession:
    """Mutable state of one ``acquire`` call.

    All mutation happens in ``offer``/``expire`` without awaiting, so the
    decision and the flag that prevents a second one change together.
    """

    threshold_m: float
    decided: bool = False
    best: PositionFix | None = None
    discarded: int = 0

    def offer(self, event: PositionEvent) -> AcquisitionOutcome | None:
        if self.decided:
            return None
        if isinstance(event, GeoError):
            location_events_total.labels(kind="error").inc()
            if self.best is not None:
                return self._decide(Accepted(self.best, degraded=True))
            return self._decide(Failed(event))

        if not event.has_finite_coordinates:
            self.discarded += 1
            location_events_total.labels(kind="discarded").inc()
            return None

        location_events_total.labels(kind="fix").inc()
        if event.effective_accuracy_m <= self.threshold_m:
            return self._decide(Accepted(event))
        if (
            self.best is None
            or event.effective_accuracy_m < self.best.effective_accuracy_m
        ):
            self.best = event
        return None

    def expire(self) -> AcquisitionOutcome:
        """Decide when the deadline fires or the stream ends."""
        if self.best is not None:
            return self._decide(Accepted(self.best, degraded=True))
        return self._decide(
            Failed(GeoError(GeoErrorKind.TIMEOUT, REFINE_FAILED_MESSAGE))
        )

    def _decide(self, outcome: AcquisitionOutcome) -> AcquisitionOutcome:
        self.decided = True
        return outcome


class LocationAcquirer:
    def __init__(self, source: PositionSource) -> None:
        self.source = source

    async def acquire(
        self,
        threshold_m: float = DEFAULT_THRESHOLD_M,
        deadline_s: float = DEFAULT_DEADLINE_S,
        token: CancelToken | None = None,
    ) -> AcquisitionOutcome:
        """Return exactly one outcome for this acquisition session.

        The first fix within ``threshold_m`` wins. Otherwise, when the
        deadline passes or the stream reports an error, the most accurate
        fix seen so far is accepted as degraded; with no usable fix the
        session fails. The subscription is closed on every exit path.
        """

        token = token or CancelToken()
        session = AcquisitionSession(threshold_m=threshold_m)
        subscription = self.source.subscribe()
        try:
            outcome = await token.run(
                self._race(session, subscription, deadline_s)
            )
        except OperationCancelled:
            outcome = Cancelled()
        finally:
            subscription.close()

        self._record(outcome, session)
        return outcome

    async def _race(
        self,
        session: AcquisitionSession,
        subscription: PositionSubscription,
        deadline_s: float,
    ) -> AcquisitionOutcome:
        try:
            async with asyncio.timeout(deadline_s):
                async for event in subscription:
                    outcome = session.offer(event)
                    if outcome is not None:
                        return outcome
        except TimeoutError:
            logger.info(
                "geoweather.location.deadline source=%s deadline_s=%s",
                self.source.name,
                deadline_s,
            )
            return session.expire()
        logger.info(
            "geoweather.location.stream_ended source=%s", self.source.name
        )
        return session.expire()

    def _record(
        self, outcome: AcquisitionOutcome, session: AcquisitionSession
    ) -> None:
        if isinstance(outcome, Accepted):
            label = "degraded" if outcome.degraded else "accepted"
            logger.info(
                "geoweather.location.accepted accuracy_m=%s degraded=%s "
                "discarded=%s",
                outcome.fix.effective_accuracy_m,
                outcome.degraded,
                session.discarded,
            )
        elif isinstance(outcome, Failed):
            label = "failed"
            logger.warning(
                "geoweather.location.failed kind=%s message=%s",
                outcome.error.kind.value,
                outcome.error.describe(),
            )
        else:
            label = "cancelled"
            logger.info("geoweather.location.cancelled")
        location_outcomes_total.labels(outcome=label).inc()
