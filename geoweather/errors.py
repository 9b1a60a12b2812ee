"""Failure taxonomy for one pipeline run.

Every fatal failure carries the user-facing message that ends up in
``Error(message)``. ``OperationCancelled`` is not a
``WeatherPipelineError``: cancellation never produces a state.
"""

from __future__ import annotations

from .engines.types import GeoError, GeoErrorKind


class OperationCancelled(Exception):
    """Raised when the run's cancel token fires during an await."""


class WeatherPipelineError(Exception):
    """Base class for failures that end a run with an error state."""

    code = "pipeline_error"
    default_message = "Failed to fetch weather data."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class LocationError(WeatherPipelineError):
    code = "location_error"
    default_message = "Unable to retrieve your location."

    def __init__(self, error: GeoError) -> None:
        self.error = error
        super().__init__(error.describe())

    @classmethod
    def from_geo_error(cls, error: GeoError) -> LocationError:
        subclass = _LOCATION_ERRORS.get(error.kind, LocationError)
        return subclass(error)


class LocationPermissionDenied(LocationError):
    code = "location_permission_denied"


class LocationUnavailable(LocationError):
    code = "location_unavailable"


class LocationTimeout(LocationError):
    code = "location_timeout"


class LocationUnsupported(WeatherPipelineError):
    code = "location_unsupported"
    default_message = "Geolocation is not supported in this environment."


class InvalidCoordinates(WeatherPipelineError):
    code = "invalid_coordinates"
    default_message = "Received invalid coordinates from geolocation."


class MissingCredential(WeatherPipelineError):
    code = "missing_credential"
    default_message = "Missing OpenWeatherMap API key (OPENWEATHER_API_KEY)."


class NetworkFailure(WeatherPipelineError):
    code = "network_failure"

    def __init__(self, status: int | None, message: str) -> None:
        self.status = status
        super().__init__(message)

    @classmethod
    def from_response(cls, status: int, body: object) -> NetworkFailure:
        """Build ``"<status> <provider message>"`` or ``"HTTP <status>"``."""
        detail = None
        if isinstance(body, dict):
            detail = body.get("message") or body.get("error")
        if detail:
            return cls(status, f"{status} {detail}")
        return cls(status, f"HTTP {status}")


class InvalidShape(WeatherPipelineError):
    code = "invalid_shape"
    default_message = "Weather data is unavailable."


class EmptyForecast(WeatherPipelineError):
    code = "empty_forecast"
    default_message = "Unable to prepare hourly forecast data."


_LOCATION_ERRORS: dict[GeoErrorKind, type[LocationError]] = {
    GeoErrorKind.PERMISSION_DENIED: LocationPermissionDenied,
    GeoErrorKind.POSITION_UNAVAILABLE: LocationUnavailable,
    GeoErrorKind.TIMEOUT: LocationTimeout,
}


def first_failure(failures: ExceptionGroup[Exception]) -> Exception:
    """Pick the exception a task group failure should surface as.

    Cancellation wins over pipeline errors; anything unexpected keeps the
    whole group.
    """

    for exc in failures.exceptions:
        if isinstance(exc, OperationCancelled):
            return exc
    for exc in failures.exceptions:
        if isinstance(exc, WeatherPipelineError):
            return exc
    return failures
