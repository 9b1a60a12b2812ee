from __future__ import annotations

# ruff: noqa: S101
import asyncio
from zoneinfo import ZoneInfo

import httpx
import pytest

from geoweather.engines.types import (
    Error,
    GeoError,
    GeoErrorKind,
    Idle,
    Loading,
    PipelineState,
    PositionFix,
    ProviderPayload,
    Ready,
)
from geoweather.pipeline import WeatherPipeline, build_snapshot
from geoweather.sources import (
    QueuePositionSource,
    ReplayPositionSource,
    TimedEvent,
)
from geoweather.tests.fakes import (
    TOKYO_CURRENT,
    RecordingTransport,
    forecast_body,
    opencage_geocoder,
    openweather_client,
    openweather_handler,
)

UTC_ZONE = ZoneInfo("UTC")


def _source(
    *events: tuple[float, PositionFix | GeoError],
) -> ReplayPositionSource:
    return ReplayPositionSource(
        [TimedEvent(offset_s=offset, event=event) for offset, event in events]
    )


def _fix(accuracy: float, lat: float = 35.68) -> PositionFix:
    return PositionFix(latitude=lat, longitude=139.76, accuracy_m=accuracy)


def _pipeline(
    source: ReplayPositionSource | QueuePositionSource | None,
    weather: RecordingTransport | None = None,
    geocode: RecordingTransport | None = None,
    *,
    api_key: str = "test-key",
    geocode_key: str = "",
    deadline_s: float = 1.0,
) -> WeatherPipeline:
    weather = weather or RecordingTransport(openweather_handler())
    geocode = geocode or RecordingTransport(
        lambda request: httpx.Response(200, json={"results": []})
    )
    return WeatherPipeline(
        source,
        fetcher=openweather_client(weather, api_key=api_key),
        resolver=opencage_geocoder(geocode, api_key=geocode_key),
        threshold_m=100.0,
        deadline_s=deadline_s,
        zone=UTC_ZONE,
    )


def _run(pipeline: WeatherPipeline) -> tuple[PipelineState, list[str]]:
    seen: list[str] = []
    pipeline.subscribe(lambda state: seen.append(state.name))
    return asyncio.run(pipeline.run()), seen


def test_ready_uses_provider_name_without_geocoder() -> None:
    weather = RecordingTransport(openweather_handler())
    geocode = RecordingTransport(
        lambda request: httpx.Response(200, json={"results": []})
    )
    pipeline = _pipeline(_source((0.0, _fix(20.0))), weather, geocode)

    assert isinstance(pipeline.state, Idle)
    state, seen = _run(pipeline)

    assert isinstance(state, Ready)
    assert seen == ["loading", "ready"]
    assert pipeline.state == state
    assert state.snapshot.display_name == "Tokyo"
    assert state.snapshot.temperature_c == pytest.approx(18.46)
    assert state.snapshot.description == "晴れ"
    assert state.snapshot.icon_url == (
        "https://openweathermap.org/img/wn/01d@2x.png"
    )
    assert len(state.forecast) == 8
    assert state.forecast[0].label == "22:13"
    assert geocode.requests == []


def test_geocoded_city_replaces_provider_name() -> None:
    geocode = RecordingTransport(
        lambda request: httpx.Response(
            200, json={"results": [{"components": {"city": "千代田区"}}]}
        )
    )
    pipeline = _pipeline(
        _source((0.0, _fix(20.0))), geocode=geocode, geocode_key="geo-key"
    )

    state, _ = _run(pipeline)

    assert isinstance(state, Ready)
    assert state.snapshot.display_name == "千代田区"
    assert len(geocode.requests) == 1


def test_missing_api_key_fails_before_any_request() -> None:
    weather = RecordingTransport(openweather_handler())
    pipeline = _pipeline(_source((0.0, _fix(20.0))), weather, api_key="")

    state, seen = _run(pipeline)

    assert isinstance(state, Error)
    assert state.message.startswith("Missing OpenWeatherMap API key")
    assert seen == ["loading", "error"]
    assert weather.requests == []


def test_provider_rejection_surfaces_status_and_message() -> None:
    weather = RecordingTransport(
        openweather_handler(
            current={"cod": 401, "message": "invalid key"},
            current_status=401,
        )
    )
    pipeline = _pipeline(_source((0.0, _fix(20.0))), weather)

    state, _ = _run(pipeline)

    assert state == Error("401 invalid key")


def test_unsupported_location_source() -> None:
    state, seen = _run(_pipeline(None))

    assert state == Error("Geolocation is not supported in this environment.")
    assert seen == ["loading", "error"]


def test_permission_denied_message() -> None:
    source = _source((0.0, GeoError(GeoErrorKind.PERMISSION_DENIED)))

    state, _ = _run(_pipeline(source))

    assert state == Error("Location permission was denied.")


def test_deadline_without_fix_reports_refine_failure() -> None:
    state, _ = _run(_pipeline(_source(), deadline_s=0.02))

    assert state == Error("Unable to refine your location.")


def test_degraded_fix_is_still_used_for_weather() -> None:
    weather = RecordingTransport(openweather_handler())
    source = _source((0.0, _fix(900.0, lat=1.5)), (0.005, _fix(400.0)))
    pipeline = _pipeline(source, weather, deadline_s=0.05)

    state, _ = _run(pipeline)

    assert isinstance(state, Ready)
    assert {r.url.params["lat"] for r in weather.requests} == {"35.68"}


def test_only_the_first_qualifying_fix_is_fetched() -> None:
    weather = RecordingTransport(openweather_handler())
    source = _source(
        (0.0, _fix(50.0, lat=10.0)),
        (0.001, _fix(5.0, lat=20.0)),
        (0.002, _fix(1.0, lat=30.0)),
    )
    pipeline = _pipeline(source, weather)

    state, _ = _run(pipeline)

    assert isinstance(state, Ready)
    assert sorted(weather.paths()) == [
        "/data/2.5/forecast",
        "/data/2.5/weather",
    ]
    assert {r.url.params["lat"] for r in weather.requests} == {"10.0"}


def test_empty_forecast_after_sampling() -> None:
    forecast = {"list": [{"dt": 1700000000, "main": {"temp": None}}]}
    weather = RecordingTransport(openweather_handler(forecast=forecast))
    pipeline = _pipeline(_source((0.0, _fix(20.0))), weather)

    state, _ = _run(pipeline)

    assert state == Error("Unable to prepare hourly forecast data.")


def test_unexpected_failure_reports_generic_message(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def explode(records: object, **kwargs: object) -> list[object]:
        raise RuntimeError("bad sampler")

    monkeypatch.setattr("geoweather.pipeline.sample_forecast", explode)

    state, _ = _run(_pipeline(_source((0.0, _fix(20.0)))))

    assert state == Error("Failed to fetch weather data.")


def test_cancel_after_acquisition_emits_nothing_more() -> None:
    requested = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        requested.set()
        await asyncio.sleep(10)
        return httpx.Response(200, json=TOKYO_CURRENT)

    weather = RecordingTransport(handler)
    seen: list[str] = []

    async def scenario() -> PipelineState:
        pipeline = _pipeline(_source((0.0, _fix(20.0))), weather)
        pipeline.subscribe(lambda state: seen.append(state.name))
        task = pipeline.start()
        await requested.wait()
        pipeline.cancel()
        await task
        return pipeline.state

    state = asyncio.run(scenario())

    assert state == Loading()
    assert seen == ["loading"]


def test_restart_cancels_previous_run_and_resets_to_loading() -> None:
    source = QueuePositionSource()
    seen: list[str] = []

    async def scenario() -> tuple[PipelineState, PipelineState]:
        pipeline = _pipeline(source)
        pipeline.subscribe(lambda state: seen.append(state.name))
        first = pipeline.start()
        await asyncio.sleep(0)
        second = pipeline.start()
        await asyncio.sleep(0)
        source.publish(_fix(20.0))
        return await first, await second

    first_state, second_state = asyncio.run(scenario())

    assert isinstance(first_state, Loading | Ready)
    assert isinstance(second_state, Ready)
    assert seen == ["loading", "loading", "ready"]
    assert source.active_subscriptions == 0


def test_unsubscribe_stops_notifications() -> None:
    seen: list[str] = []
    pipeline = _pipeline(_source((0.0, _fix(20.0))))
    unsubscribe = pipeline.subscribe(lambda state: seen.append(state.name))
    unsubscribe()
    unsubscribe()

    state = asyncio.run(pipeline.run())

    assert isinstance(state, Ready)
    assert seen == []


def test_build_snapshot_falls_back_to_provider_name() -> None:
    payload = ProviderPayload(current=TOKYO_CURRENT, forecast=forecast_body())

    assert build_snapshot(payload, None).display_name == "Tokyo"
    assert build_snapshot(payload, "").display_name == "Tokyo"
    assert build_snapshot(payload, "港区").display_name == "港区"


def test_geocode_request_is_finished_before_error_is_emitted() -> None:
    geocode_done: list[bool] = []

    async def slow_geocode(request: httpx.Request) -> httpx.Response:
        try:
            await asyncio.sleep(10)
        finally:
            await asyncio.sleep(0)
            geocode_done.append(True)
        return httpx.Response(200, json={"results": []})

    async def failing_weather(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.01)
        raise httpx.ConnectError("refused", request=request)

    seen: list[tuple[str, bool]] = []
    pipeline = _pipeline(
        _source((0.0, _fix(20.0))),
        RecordingTransport(failing_weather),
        RecordingTransport(slow_geocode),
        geocode_key="geo-key",
    )
    pipeline.subscribe(
        lambda state: seen.append((state.name, bool(geocode_done)))
    )

    state = asyncio.run(pipeline.run())

    assert isinstance(state, Error)
    assert state.message.startswith("Unable to reach OpenWeatherMap")
    assert seen == [("loading", False), ("error", True)]
