"""Turn raw 3-hourly provider records into display-ready forecast points."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import datetime, tzinfo
from typing import Any, Final

from django.conf import settings

from .engines.types import ForecastPoint, is_finite_number
from .timeutils import (
    format_label,
    from_epoch_seconds,
    from_provider_text,
    get_zone,
)

HOURS_TO_DISPLAY: Final[int] = 24
FORECAST_INTERVAL_HOURS: Final[int] = 3
FORECAST_POINTS: Final[int] = HOURS_TO_DISPLAY // FORECAST_INTERVAL_HOURS

DISPLAY_TZ: Final[str] = getattr(settings, "WEATHER_DISPLAY_TZ", "Asia/Tokyo")


def round_half_up(value: float, digits: int = 0) -> float:
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def to_percent(fraction: float) -> int:
    return max(0, min(100, int(round_half_up(fraction * 100))))


def sample_forecast(
    records: object,
    *,
    zone: tzinfo | None = None,
    limit: int = FORECAST_POINTS,
) -> list[ForecastPoint]:
    """Sample the first ``limit`` records into forecast points.

    Records are assumed to arrive in chronological order at fixed
    intervals. Invalid records are dropped, not replaced, so the result may
    be shorter than ``limit``.
    """

    if not isinstance(records, Sequence) or isinstance(records, str | bytes):
        return []
    display_zone = zone or get_zone(DISPLAY_TZ)
    points: list[ForecastPoint] = []
    for record in records[:limit]:
        point = _sample_record(record, display_zone)
        if point is not None:
            points.append(point)
    return points


def _sample_record(record: Any, zone: tzinfo) -> ForecastPoint | None:
    if not isinstance(record, Mapping):
        return None

    timestamp = _record_timestamp(record)
    if timestamp is None:
        return None

    main = record.get("main")
    temperature = main.get("temp") if isinstance(main, Mapping) else None
    if not is_finite_number(temperature):
        return None

    pop = record.get("pop")
    probability = float(pop) if is_finite_number(pop) else 0.0

    return ForecastPoint(
        label=format_label(timestamp, zone),
        temperature_c=round_half_up(float(temperature), 1),
        precipitation_probability_percent=to_percent(probability),
    )


def _record_timestamp(record: Mapping[str, Any]) -> datetime | None:
    epoch = record.get("dt")
    if isinstance(epoch, int | float) and not isinstance(epoch, bool):
        return from_epoch_seconds(epoch)
    return from_provider_text(record.get("dt_txt"))
