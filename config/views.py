"""Project-level non-DRF views."""

from __future__ import annotations

from django.http import HttpRequest, JsonResponse


def home(request: HttpRequest) -> JsonResponse:
    """Return service metadata plus the weather and docs entrypoints."""
    return JsonResponse(
        {
            "ok": True,
            "service": "geoweather",
            "weather": "/api/v1/weather/local/",
            "docs": "/api/docs/",
            "metrics": "/metrics",
        }
    )
