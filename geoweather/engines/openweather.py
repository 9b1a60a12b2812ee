"""OpenWeatherMap current-conditions and 3-hourly forecast client."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any, Final, Literal, cast

import httpx
from django.conf import settings

from ..cancellation import CancelToken
from ..errors import (
    InvalidShape,
    MissingCredential,
    NetworkFailure,
    first_failure,
)
from ..metrics import (
    weather_provider_errors_total,
    weather_provider_latency_seconds,
    weather_provider_requests_total,
)
from .types import ProviderName, ProviderPayload, is_finite_number

logger = logging.getLogger(__name__)

Endpoint = Literal["current", "forecast"]

ENDPOINT_PATHS: Final[dict[Endpoint, str]] = {
    "current": "weather",
    "forecast": "forecast",
}

CURRENT_UNAVAILABLE: Final[str] = "Current weather data is unavailable."
FORECAST_UNAVAILABLE: Final[str] = "Hourly forecast data is unavailable."


class OpenWeatherClient:
    """Fetch current conditions and forecast for one coordinate pair.

    Both endpoints are requested concurrently and both responses are awaited.
    Only a transport failure cancels the sibling request; statuses and
    shapes are then checked current first, forecast second.
    """

    name: ProviderName = "openweathermap"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        lang: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key: str = (
            api_key
            if api_key is not None
            else cast(str, getattr(settings, "OPENWEATHER_API_KEY", ""))
        )
        self.base_url: str = (
            base_url
            or cast(
                str,
                getattr(
                    settings,
                    "OPENWEATHER_BASE_URL",
                    "https://api.openweathermap.org/data/2.5",
                ),
            )
        ).rstrip("/")
        self.lang: str = lang or cast(
            str, getattr(settings, "WEATHER_LANG", "ja")
        )
        self.timeout = float(
            timeout
            if timeout is not None
            else getattr(settings, "WEATHER_REQUEST_TIMEOUT_S", 10.0)
        )
        self.transport = transport

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    async def fetch(
        self,
        lat: float,
        lon: float,
        token: CancelToken | None = None,
    ) -> ProviderPayload:
        if not self.has_credential:
            raise MissingCredential()
        token = token or CancelToken()
        params = {
            "lat": str(lat),
            "lon": str(lon),
            "units": "metric",
            "lang": self.lang,
            "appid": self.api_key,
        }
        return await token.run(self._fetch_both(params))

    async def _fetch_both(self, params: dict[str, str]) -> ProviderPayload:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                async with asyncio.TaskGroup() as group:
                    current_task = group.create_task(
                        self._request(client, "current", params)
                    )
                    forecast_task = group.create_task(
                        self._request(client, "forecast", params)
                    )
            except ExceptionGroup as failures:
                raise first_failure(failures) from None

        current_status, current_body = current_task.result()
        forecast_status, forecast_body = forecast_task.result()
        # Current conditions are checked first whichever answered first.
        _raise_for_status(current_status, current_body)
        _raise_for_status(forecast_status, forecast_body)
        return ProviderPayload(
            current=_validate_current(current_body),
            forecast=_validate_forecast(forecast_body),
        )

    async def _request(
        self,
        client: httpx.AsyncClient,
        endpoint: Endpoint,
        params: dict[str, str],
    ) -> tuple[int, Any]:
        """Return ``(status, json body or None)``.

        Only transport failures raise; HTTP error statuses are judged once
        both responses are in.
        """

        url = f"{self.base_url}/{ENDPOINT_PATHS[endpoint]}"
        weather_provider_requests_total.labels(
            provider=self.name, endpoint=endpoint
        ).inc()
        start_time = time.perf_counter()
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            weather_provider_errors_total.labels(
                provider=self.name,
                endpoint=endpoint,
                error_type=exc.__class__.__name__,
            ).inc()
            logger.warning(
                "geoweather.openweather.transport_error endpoint=%s err=%s",
                endpoint,
                exc,
            )
            raise NetworkFailure(
                None, f"Unable to reach OpenWeatherMap ({endpoint})."
            ) from exc
        finally:
            weather_provider_latency_seconds.labels(
                provider=self.name, endpoint=endpoint
            ).observe(time.perf_counter() - start_time)

        if not response.is_success:
            weather_provider_errors_total.labels(
                provider=self.name,
                endpoint=endpoint,
                error_type=f"HTTP{response.status_code}",
            ).inc()
            logger.warning(
                "geoweather.openweather.http_error endpoint=%s status=%s",
                endpoint,
                response.status_code,
            )
        return response.status_code, _json_or_none(response)


def _raise_for_status(status: int, body: Any) -> None:
    if not 200 <= status < 300:
        raise NetworkFailure.from_response(status, body)

def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _validate_current(body: Any) -> Mapping[str, Any]:
    if not isinstance(body, dict):
        raise InvalidShape(CURRENT_UNAVAILABLE)
    main = body.get("main")
    temperature = main.get("temp") if isinstance(main, dict) else None
    weather = body.get("weather")
    if (
        not is_finite_number(temperature)
        or not isinstance(weather, list)
        or not weather
        or not isinstance(weather[0], dict)
    ):
        raise InvalidShape(CURRENT_UNAVAILABLE)
    return body


def _validate_forecast(body: Any) -> Mapping[str, Any]:
    if not isinstance(body, dict):
        raise InvalidShape(FORECAST_UNAVAILABLE)
    records = body.get("list")
    if not isinstance(records, list) or not records:
        raise InvalidShape(FORECAST_UNAVAILABLE)
    return body
