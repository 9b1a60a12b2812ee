"""Best-effort reverse geocoding through OpenCage.

Lookup failures never propagate: the caller falls back to the weather
provider's own location name.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Final, cast

import httpx
from django.conf import settings

from ..cancellation import CancelToken
from ..errors import OperationCancelled
from ..metrics import (
    weather_provider_errors_total,
    weather_provider_latency_seconds,
    weather_provider_requests_total,
)
from .types import ProviderName

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL: Final[str] = "https://api.opencagedata.com/geocode/v1/json"


class OpenCageGeocoder:
    name: ProviderName = "opencage"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        language: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key: str = (
            api_key
            if api_key is not None
            else cast(str, getattr(settings, "OPENCAGE_API_KEY", ""))
        )
        self.base_url: str = base_url or cast(
            str, getattr(settings, "OPENCAGE_BASE_URL", DEFAULT_BASE_URL)
        )
        self.language: str = language or cast(
            str, getattr(settings, "WEATHER_LANG", "ja")
        )
        self.timeout = float(
            timeout
            if timeout is not None
            else getattr(settings, "WEATHER_REQUEST_TIMEOUT_S", 10.0)
        )
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    async def resolve(
        self,
        lat: float,
        lon: float,
        token: CancelToken | None = None,
    ) -> str | None:
        """Return the city name for a coordinate pair, or ``None``."""

        if not self.enabled:
            return None
        token = token or CancelToken()
        try:
            return await token.run(self._lookup(lat, lon))
        except OperationCancelled:
            logger.info("geoweather.geocode.cancelled")
            return None
        except Exception as exc:  # pragma: no cover - lookup is best effort
            self._count_error(exc.__class__.__name__)
            logger.exception("geoweather.geocode.unexpected err=%s", exc)
            return None

    async def _lookup(self, lat: float, lon: float) -> str | None:
        params = {
            "key": self.api_key,
            "q": f"{lat},{lon}",
            "language": self.language,
            "limit": "1",
            "no_annotations": "1",
        }
        weather_provider_requests_total.labels(
            provider=self.name, endpoint="reverse"
        ).inc()
        start_time = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(self.base_url, params=params)
        except httpx.HTTPError as exc:
            self._count_error(exc.__class__.__name__)
            logger.warning("geoweather.geocode.request_failed err=%s", exc)
            return None
        finally:
            weather_provider_latency_seconds.labels(
                provider=self.name, endpoint="reverse"
            ).observe(time.perf_counter() - start_time)

        if not response.is_success:
            self._count_error(f"HTTP{response.status_code}")
            logger.warning(
                "geoweather.geocode.failed status=%s reason=%s",
                response.status_code,
                response.reason_phrase,
            )
            return None

        try:
            data = response.json()
        except ValueError:
            self._count_error("InvalidJSON")
            logger.warning("geoweather.geocode.invalid_json")
            return None
        return _city_from_payload(data)

    def _count_error(self, error_type: str) -> None:
        weather_provider_errors_total.labels(
            provider=self.name, endpoint="reverse", error_type=error_type
        ).inc()


def _city_from_payload(data: Any) -> str | None:
    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list) or not results:
        return None
    first = results[0]
    components = first.get("components") if isinstance(first, dict) else None
    city = components.get("city") if isinstance(components, dict) else None
    if isinstance(city, str) and city.strip():
        return city.strip()
    return None
