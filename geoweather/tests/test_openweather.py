from __future__ import annotations

# ruff: noqa: S101
import asyncio
from typing import Any

import httpx
import pytest

from geoweather.cancellation import CancelToken
from geoweather.engines.openweather import (
    CURRENT_UNAVAILABLE,
    FORECAST_UNAVAILABLE,
)
from geoweather.engines.types import ProviderPayload
from geoweather.errors import (
    InvalidShape,
    MissingCredential,
    NetworkFailure,
    OperationCancelled,
)
from geoweather.metrics import weather_provider_errors_total
from geoweather.tests.fakes import (
    TOKYO_CURRENT,
    RecordingTransport,
    forecast_body,
    openweather_client,
    openweather_handler,
)


def _fetch(transport: httpx.AsyncBaseTransport) -> ProviderPayload:
    client = openweather_client(transport)
    return asyncio.run(client.fetch(35.68, 139.76))


def test_fetch_requests_both_endpoints_with_metric_units() -> None:
    transport = RecordingTransport(openweather_handler())

    payload = _fetch(transport)

    assert sorted(transport.paths()) == [
        "/data/2.5/forecast",
        "/data/2.5/weather",
    ]
    for request in transport.requests:
        params = request.url.params
        assert params["lat"] == "35.68"
        assert params["lon"] == "139.76"
        assert params["units"] == "metric"
        assert params["lang"] == "ja"
        assert params["appid"] == "test-key"
    assert payload.location_name == "Tokyo"
    assert len(payload.forecast_records) == 10


def test_provider_message_is_used_for_http_errors() -> None:
    transport = RecordingTransport(
        openweather_handler(
            current={"cod": 401, "message": "invalid key"},
            current_status=401,
        )
    )
    counter = weather_provider_errors_total.labels(
        provider="openweathermap", endpoint="current", error_type="HTTP401"
    )
    before = counter._value.get()

    with pytest.raises(NetworkFailure) as excinfo:
        _fetch(transport)

    assert excinfo.value.message == "401 invalid key"
    assert excinfo.value.status == 401
    assert counter._value.get() == before + 1


def test_error_field_is_used_when_message_is_missing() -> None:
    transport = RecordingTransport(
        openweather_handler(
            forecast={"error": "rate limited"}, forecast_status=429
        )
    )

    with pytest.raises(NetworkFailure, match="429 rate limited"):
        _fetch(transport)


def test_http_error_without_body_reports_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/weather"):
            return httpx.Response(500, text="oops")
        return httpx.Response(200, json=forecast_body())

    with pytest.raises(NetworkFailure) as excinfo:
        _fetch(RecordingTransport(handler))

    assert excinfo.value.message == "HTTP 500"


def test_transport_error_becomes_network_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkFailure) as excinfo:
        _fetch(RecordingTransport(handler))

    assert excinfo.value.status is None
    assert excinfo.value.message.startswith("Unable to reach OpenWeatherMap")


@pytest.mark.parametrize(
    "current",
    [
        {"main": {}, "weather": [{"icon": "01d"}]},
        {"main": {"temp": "warm"}, "weather": [{"icon": "01d"}]},
        {"main": {"temp": 20.0}, "weather": []},
        {"main": {"temp": 20.0}},
        ["not", "an", "object"],
    ],
)
def test_invalid_current_shape(current: Any) -> None:
    transport = RecordingTransport(openweather_handler(current=current))

    with pytest.raises(InvalidShape) as excinfo:
        _fetch(transport)

    assert excinfo.value.message == CURRENT_UNAVAILABLE


@pytest.mark.parametrize(
    "forecast", [{"list": []}, {"list": "soon"}, {"cod": "200"}, []]
)
def test_invalid_forecast_shape(forecast: Any) -> None:
    transport = RecordingTransport(openweather_handler(forecast=forecast))

    with pytest.raises(InvalidShape) as excinfo:
        _fetch(transport)

    assert excinfo.value.message == FORECAST_UNAVAILABLE


def test_missing_credential_makes_no_request() -> None:
    transport = RecordingTransport(openweather_handler())
    client = openweather_client(transport, api_key="   ")

    assert client.has_credential is False
    with pytest.raises(MissingCredential) as excinfo:
        asyncio.run(client.fetch(35.68, 139.76))

    assert transport.requests == []
    assert excinfo.value.message.startswith("Missing OpenWeatherMap API key")


def test_cancel_aborts_in_flight_requests() -> None:
    completed: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(10)
        completed.append(request.url.path)
        return httpx.Response(200, json=TOKYO_CURRENT)

    async def scenario() -> None:
        token = CancelToken()
        client = openweather_client(RecordingTransport(handler))
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await client.fetch(35.68, 139.76, token)

    with pytest.raises(OperationCancelled):
        asyncio.run(scenario())
    assert completed == []


def test_current_status_wins_over_faster_forecast_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/weather"):
            await asyncio.sleep(0.05)
            return httpx.Response(401, json={"message": "invalid key"})
        return httpx.Response(500, json={"message": "server busy"})

    transport = RecordingTransport(handler)

    with pytest.raises(NetworkFailure) as excinfo:
        _fetch(transport)

    assert excinfo.value.message == "401 invalid key"
    assert len(transport.requests) == 2


def test_forecast_status_is_checked_before_current_shape() -> None:
    transport = RecordingTransport(
        openweather_handler(
            current={"main": {}},
            forecast={"message": "maintenance"},
            forecast_status=503,
        )
    )

    with pytest.raises(NetworkFailure) as excinfo:
        _fetch(transport)

    assert excinfo.value.message == "503 maintenance"


def test_http_error_waits_for_the_sibling_response() -> None:
    completed: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/forecast"):
            await asyncio.sleep(0.02)
            completed.append("forecast")
            return httpx.Response(200, json=forecast_body())
        return httpx.Response(404, json={"message": "city not found"})

    with pytest.raises(NetworkFailure, match="404 city not found"):
        _fetch(RecordingTransport(handler))

    assert completed == ["forecast"]
