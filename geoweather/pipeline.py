"""Location → weather pipeline with an observable tri-state result.

State transitions per run: ``Loading`` → ``Error`` | ``Ready``. A cancelled
run emits nothing after cancellation, and starting a new run cancels the
previous one and resets the state to ``Loading``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import tzinfo
from typing import Final

from .cancellation import CancelToken
from .engines.base import PositionSource
from .engines.opencage import OpenCageGeocoder
from .engines.openweather import OpenWeatherClient
from .engines.types import (
    Cancelled,
    Error,
    Failed,
    Idle,
    Loading,
    PipelineState,
    PositionFix,
    ProviderPayload,
    Ready,
    WeatherSnapshot,
)
from .errors import (
    EmptyForecast,
    InvalidCoordinates,
    LocationError,
    LocationUnsupported,
    MissingCredential,
    OperationCancelled,
    WeatherPipelineError,
    first_failure,
)
from .location import (
    DEFAULT_DEADLINE_S,
    DEFAULT_THRESHOLD_M,
    LocationAcquirer,
)
from .metrics import pipeline_runs_total
from .sampling import sample_forecast

logger = logging.getLogger(__name__)

GENERIC_FAILURE: Final[str] = "Failed to fetch weather data."

StateListener = Callable[[PipelineState], None]


class WeatherPipeline:
    def __init__(
        self,
        source: PositionSource | None,
        *,
        fetcher: OpenWeatherClient | None = None,
        resolver: OpenCageGeocoder | None = None,
        threshold_m: float = DEFAULT_THRESHOLD_M,
        deadline_s: float = DEFAULT_DEADLINE_S,
        zone: tzinfo | None = None,
    ) -> None:
        self.source = source
        self.fetcher = fetcher or OpenWeatherClient()
        self.resolver = resolver or OpenCageGeocoder()
        self.threshold_m = threshold_m
        self.deadline_s = deadline_s
        self.zone = zone
        self._state: PipelineState = Idle()
        self._listeners: list[StateListener] = []
        self._token: CancelToken | None = None
        self._task: asyncio.Task[PipelineState] | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for every emitted state; returns an undo."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self) -> asyncio.Task[PipelineState]:
        """Cancel any run in flight and start a new one.

        Must be called from a running event loop.
        """

        loop = asyncio.get_running_loop()
        self.cancel()
        token = CancelToken()
        self._token = token
        self._emit(Loading(), token)
        self._task = loop.create_task(self._run(token))
        return self._task

    async def run(self) -> PipelineState:
        """Start a run and wait for its terminal state."""

        return await self.start()

    def cancel(self) -> None:
        if self._token is not None and not self._token.cancelled:
            logger.info("geoweather.pipeline.cancel")
            self._token.cancel()

    async def _run(self, token: CancelToken) -> PipelineState:
        try:
            ready = await self._execute(token)
        except OperationCancelled:
            pipeline_runs_total.labels(outcome="cancelled").inc()
            logger.info("geoweather.pipeline.cancelled")
            return self._state
        except WeatherPipelineError as exc:
            logger.warning(
                "geoweather.pipeline.failed code=%s message=%s",
                exc.code,
                exc.message,
            )
            return self._finish(Error(exc.message), token, exc.code)
        except Exception:
            logger.exception("geoweather.pipeline.unexpected_error")
            return self._finish(Error(GENERIC_FAILURE), token, "unexpected")
        return self._finish(ready, token, "ready")

    async def _execute(self, token: CancelToken) -> Ready:
        if self.source is None:
            raise LocationUnsupported()

        outcome = await LocationAcquirer(self.source).acquire(
            threshold_m=self.threshold_m,
            deadline_s=self.deadline_s,
            token=token,
        )
        if isinstance(outcome, Cancelled):
            raise OperationCancelled()
        if isinstance(outcome, Failed):
            raise LocationError.from_geo_error(outcome.error)

        fix = outcome.fix
        if not fix.has_finite_coordinates:
            raise InvalidCoordinates()
        if not self.fetcher.has_credential:
            raise MissingCredential()

        payload, place_name = await self._fetch(fix, token)
        token.raise_if_cancelled()

        forecast = sample_forecast(payload.forecast_records, zone=self.zone)
        if not forecast:
            raise EmptyForecast()
        return Ready(
            snapshot=build_snapshot(payload, place_name),
            forecast=tuple(forecast),
        )

    async def _fetch(
        self, fix: PositionFix, token: CancelToken
    ) -> tuple[ProviderPayload, str | None]:
        try:
            async with asyncio.TaskGroup() as group:
                weather_task = group.create_task(
                    self.fetcher.fetch(fix.latitude, fix.longitude, token)
                )
                place_task = group.create_task(
                    self.resolver.resolve(fix.latitude, fix.longitude, token)
                )
        except ExceptionGroup as failures:
            error = first_failure(failures)
            if not isinstance(error, OperationCancelled):
                logger.error(
                    "geoweather.pipeline.fetch_failed lat=%s lon=%s "
                    "accuracy_m=%s err=%s",
                    fix.latitude,
                    fix.longitude,
                    fix.effective_accuracy_m,
                    error,
                )
            raise error from None
        return weather_task.result(), place_task.result()

    def _finish(
        self, state: PipelineState, token: CancelToken, outcome: str
    ) -> PipelineState:
        if token.cancelled:
            pipeline_runs_total.labels(outcome="cancelled").inc()
            return self._state
        pipeline_runs_total.labels(outcome=outcome).inc()
        self._emit(state, token)
        return state

    def _emit(self, state: PipelineState, token: CancelToken) -> None:
        if token.cancelled or token is not self._token:
            return
        self._state = state
        for listener in list(self._listeners):
            listener(state)


def build_snapshot(
    payload: ProviderPayload, place_name: str | None
) -> WeatherSnapshot:
    current = payload.current
    weather = current["weather"][0]
    return WeatherSnapshot(
        display_name=place_name or payload.location_name,
        temperature_c=float(current["main"]["temp"]),
        description=str(weather.get("description") or ""),
        icon_code=str(weather.get("icon") or ""),
    )
