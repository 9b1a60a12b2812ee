from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, ClassVar, cast

from django.conf import settings
from rest_framework import serializers

from config.api.responses import JSONValue

from .engines.types import (
    Error,
    ForecastPoint,
    GeoError,
    GeoErrorKind,
    PipelineState,
    PositionFix,
    Ready,
    WeatherSnapshot,
)
from .location import DEFAULT_DEADLINE_S, DEFAULT_THRESHOLD_M
from .sources import TimedEvent

MAX_DEADLINE_S = float(getattr(settings, "LOCATION_MAX_DEADLINE_S", 30.0))
MAX_EVENTS = 200

EVENT_KINDS = ("fix", "error")
ERROR_CODES = tuple(kind.value for kind in GeoErrorKind)


class PositionEventSerializer(serializers.Serializer):
    kind: ClassVar[serializers.ChoiceField] = serializers.ChoiceField(
        choices=EVENT_KINDS, default="fix"
    )
    latitude: ClassVar[serializers.FloatField] = serializers.FloatField(
        min_value=-90.0, max_value=90.0, required=False
    )
    longitude: ClassVar[serializers.FloatField] = serializers.FloatField(
        min_value=-180.0, max_value=180.0, required=False
    )
    accuracy: ClassVar[serializers.FloatField] = serializers.FloatField(
        min_value=0.0, required=False, allow_null=True
    )
    captured_at: ClassVar[serializers.DateTimeField] = (
        serializers.DateTimeField(required=False)
    )
    code: ClassVar[serializers.ChoiceField] = serializers.ChoiceField(
        choices=ERROR_CODES, required=False
    )
    message: ClassVar[serializers.CharField] = serializers.CharField(
        required=False, allow_blank=True, default=""
    )
    offset_ms: ClassVar[serializers.IntegerField] = serializers.IntegerField(
        min_value=0, default=0
    )

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        attrs = super().validate(attrs)
        if attrs.get("kind") == "fix":
            if attrs.get("latitude") is None or attrs.get("longitude") is None:
                raise serializers.ValidationError(
                    "latitude and longitude are required for fix events."
                )
        elif not attrs.get("code"):
            raise serializers.ValidationError(
                "code is required for error events."
            )
        return attrs


class LocalWeatherRequestSerializer(serializers.Serializer):
    threshold_m: ClassVar[serializers.FloatField] = serializers.FloatField(
        min_value=0.0, required=False, default=DEFAULT_THRESHOLD_M
    )
    deadline_s: ClassVar[serializers.FloatField] = serializers.FloatField(
        min_value=0.0,
        max_value=MAX_DEADLINE_S,
        required=False,
        default=min(DEFAULT_DEADLINE_S, MAX_DEADLINE_S),
    )
    events: ClassVar[serializers.ListSerializer] = PositionEventSerializer(
        many=True, allow_empty=True
    )
    end_of_stream: ClassVar[serializers.BooleanField] = (
        serializers.BooleanField(required=False, default=False)
    )

    def validate_events(
        self, value: Sequence[dict[str, Any]]
    ) -> Sequence[dict[str, Any]]:
        if len(value) > MAX_EVENTS:
            raise serializers.ValidationError(
                f"At most {MAX_EVENTS} events are accepted."
            )
        return value


def to_timed_events(events: Sequence[dict[str, Any]]) -> list[TimedEvent]:
    """Convert validated event payloads into replayable stream events."""

    timed: list[TimedEvent] = []
    for raw in events:
        offset_s = int(raw.get("offset_ms") or 0) / 1000.0
        if raw.get("kind") == "error":
            event: PositionFix | GeoError = GeoError.from_code(
                str(raw["code"]), str(raw.get("message") or "")
            )
        else:
            accuracy = raw.get("accuracy")
            event = PositionFix(
                latitude=float(raw["latitude"]),
                longitude=float(raw["longitude"]),
                accuracy_m=(
                    float(accuracy) if accuracy is not None else float("inf")
                ),
                captured_at=raw.get("captured_at") or datetime.now(UTC),
            )
        timed.append(TimedEvent(offset_s=offset_s, event=event))
    return timed


class WeatherSnapshotSerializer(serializers.Serializer):
    display_name: ClassVar[serializers.CharField] = serializers.CharField()
    temperature_c: ClassVar[serializers.FloatField] = serializers.FloatField()
    description: ClassVar[serializers.CharField] = serializers.CharField()
    icon_code: ClassVar[serializers.CharField] = serializers.CharField()
    icon_url: ClassVar[serializers.CharField] = serializers.CharField()


class ForecastPointSerializer(serializers.Serializer):
    label: ClassVar[serializers.CharField] = serializers.CharField()
    temperature_c: ClassVar[serializers.FloatField] = serializers.FloatField()
    precipitation_probability_percent: ClassVar[serializers.IntegerField] = (
        serializers.IntegerField(min_value=0, max_value=100)
    )


class ReadyStateSerializer(serializers.Serializer):
    state: ClassVar[serializers.CharField] = serializers.CharField()
    weather: ClassVar[WeatherSnapshotSerializer] = WeatherSnapshotSerializer()
    forecast: ClassVar[serializers.ListSerializer] = (
        ForecastPointSerializer(many=True)
    )


def serialize_snapshot(snapshot: WeatherSnapshot) -> dict[str, JSONValue]:
    return dict(WeatherSnapshotSerializer(snapshot).data)


def serialize_forecast(
    points: Sequence[ForecastPoint],
) -> list[dict[str, JSONValue]]:
    return list(ForecastPointSerializer(points, many=True).data)


def serialize_state(state: PipelineState) -> dict[str, JSONValue]:
    payload: dict[str, JSONValue] = {"state": state.name}
    if isinstance(state, Ready):
        payload["weather"] = cast(
            JSONValue, serialize_snapshot(state.snapshot)
        )
        payload["forecast"] = cast(
            JSONValue, serialize_forecast(state.forecast)
        )
    elif isinstance(state, Error):
        payload["message"] = state.message
    return payload
