from __future__ import annotations

import enum
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, TypeAlias

ProviderName = Literal["openweathermap", "opencage"]

ICON_URL_TEMPLATE = "https://openweathermap.org/img/wn/{icon}@2x.png"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class PositionFix:
    latitude: float
    longitude: float
    accuracy_m: float = math.inf
    captured_at: datetime = field(default_factory=_now)

    @property
    def has_finite_coordinates(self) -> bool:
        return is_finite_number(self.latitude) and is_finite_number(
            self.longitude
        )

    @property
    def effective_accuracy_m(self) -> float:
        """Accuracy radius, with unknown values ranked last."""
        if is_finite_number(self.accuracy_m):
            return float(self.accuracy_m)
        return math.inf


class GeoErrorKind(enum.Enum):
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


GEO_ERROR_MESSAGES: Mapping[GeoErrorKind, str] = {
    GeoErrorKind.PERMISSION_DENIED: "Location permission was denied.",
    GeoErrorKind.POSITION_UNAVAILABLE: "Unable to determine your location.",
    GeoErrorKind.TIMEOUT: "Timed out while trying to retrieve your location.",
    GeoErrorKind.UNKNOWN: "Unable to retrieve your location.",
}


@dataclass(frozen=True)
class GeoError:
    """Error reported by the position stream or by the acquisition deadline."""

    kind: GeoErrorKind
    message: str = ""

    @classmethod
    def from_code(cls, code: str, message: str = "") -> GeoError:
        """Map a platform error code; only unknown codes keep their text."""
        try:
            kind = GeoErrorKind(code)
        except ValueError:
            kind = GeoErrorKind.UNKNOWN
        if kind is not GeoErrorKind.UNKNOWN:
            message = ""
        return cls(kind=kind, message=message)

    def describe(self) -> str:
        return self.message or GEO_ERROR_MESSAGES[self.kind]


PositionEvent: TypeAlias = PositionFix | GeoError


@dataclass(frozen=True)
class Accepted:
    fix: PositionFix
    degraded: bool = False


@dataclass(frozen=True)
class Failed:
    error: GeoError


@dataclass(frozen=True)
class Cancelled:
    pass


AcquisitionOutcome: TypeAlias = Accepted | Failed | Cancelled


@dataclass(frozen=True)
class ProviderPayload:
    """Validated raw bodies of the current-conditions and forecast calls."""

    current: Mapping[str, Any]
    forecast: Mapping[str, Any]

    @property
    def forecast_records(self) -> Sequence[Any]:
        records = self.forecast.get("list")
        return records if isinstance(records, list) else []

    @property
    def location_name(self) -> str:
        name = self.current.get("name")
        return name if isinstance(name, str) else ""


@dataclass(frozen=True)
class WeatherSnapshot:
    display_name: str
    temperature_c: float
    description: str
    icon_code: str

    @property
    def icon_url(self) -> str:
        return ICON_URL_TEMPLATE.format(icon=self.icon_code)


@dataclass(frozen=True)
class ForecastPoint:
    label: str
    temperature_c: float
    precipitation_probability_percent: int


@dataclass(frozen=True)
class Idle:
    name: Literal["idle"] = "idle"


@dataclass(frozen=True)
class Loading:
    name: Literal["loading"] = "loading"


@dataclass(frozen=True)
class Error:
    message: str
    name: Literal["error"] = "error"


@dataclass(frozen=True)
class Ready:
    snapshot: WeatherSnapshot
    forecast: Sequence[ForecastPoint]
    name: Literal["ready"] = "ready"


PipelineState: TypeAlias = Idle | Loading | Error | Ready


def is_finite_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)
