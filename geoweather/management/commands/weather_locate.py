from __future__ import annotations

import asyncio
import json
from typing import Any

from django.core.management.base import (
    BaseCommand,
    CommandError,
    CommandParser,
)

from geoweather.engines.types import (
    Error,
    GeoError,
    GeoErrorKind,
    PipelineState,
    PositionFix,
)
from geoweather.location import DEFAULT_DEADLINE_S, DEFAULT_THRESHOLD_M
from geoweather.pipeline import WeatherPipeline
from geoweather.serializers import serialize_state
from geoweather.sources import ReplayPositionSource, TimedEvent


def _split_offset(raw: str) -> tuple[str, float]:
    value, _, offset = raw.partition("@")
    if not offset:
        return value, 0.0
    try:
        return value, float(offset) / 1000.0
    except ValueError as exc:
        raise CommandError(f"Invalid offset in {raw!r}.") from exc


def parse_fix(raw: str) -> TimedEvent:
    """Parse ``LAT,LON[,ACCURACY][@OFFSET_MS]``."""

    value, offset_s = _split_offset(raw)
    parts = [part.strip() for part in value.split(",")]
    if len(parts) not in (2, 3):
        raise CommandError(f"Invalid fix {raw!r}; expected LAT,LON[,ACC].")
    try:
        numbers = [float(part) for part in parts]
    except ValueError as exc:
        raise CommandError(f"Invalid fix {raw!r}; not a number.") from exc
    accuracy = numbers[2] if len(numbers) == 3 else float("inf")
    fix = PositionFix(
        latitude=numbers[0], longitude=numbers[1], accuracy_m=accuracy
    )
    return TimedEvent(offset_s=offset_s, event=fix)


def parse_error(raw: str) -> TimedEvent:
    """Parse ``CODE[:MESSAGE][@OFFSET_MS]``."""

    value, offset_s = _split_offset(raw)
    code, _, message = value.partition(":")
    if code not in {kind.value for kind in GeoErrorKind}:
        raise CommandError(f"Unknown geolocation error code {code!r}.")
    return TimedEvent(
        offset_s=offset_s, event=GeoError.from_code(code, message)
    )


class Command(BaseCommand):
    help = (
        "Replay position updates through the location pipeline and print "
        "the resulting weather state as JSON."
    )

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--fix",
            action="append",
            default=[],
            help="LAT,LON[,ACCURACY_M][@OFFSET_MS]; repeatable.",
        )
        parser.add_argument(
            "--error",
            action="append",
            default=[],
            help="CODE[:MESSAGE][@OFFSET_MS]; repeatable.",
        )
        parser.add_argument(
            "--end",
            action="store_true",
            help="End the stream after the last event instead of waiting "
            "for the deadline.",
        )
        parser.add_argument(
            "--threshold",
            type=float,
            default=DEFAULT_THRESHOLD_M,
            help="Accuracy threshold in meters.",
        )
        parser.add_argument(
            "--deadline",
            type=float,
            default=DEFAULT_DEADLINE_S,
            help="Seconds to wait for an accurate fix.",
        )

    def handle(self, *args: object, **options: Any) -> None:
        events = [parse_fix(raw) for raw in options["fix"]]
        events += [parse_error(raw) for raw in options["error"]]
        pipeline = WeatherPipeline(
            ReplayPositionSource(
                events, close_when_exhausted=bool(options["end"])
            ),
            threshold_m=float(options["threshold"]),
            deadline_s=float(options["deadline"]),
        )
        state: PipelineState = asyncio.run(pipeline.run())
        self.stdout.write(
            json.dumps(serialize_state(state), ensure_ascii=False, indent=2)
        )
        if isinstance(state, Error):
            raise CommandError(state.message)
