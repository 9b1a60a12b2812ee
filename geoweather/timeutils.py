from __future__ import annotations

import math
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

LABEL_FORMAT = "%H:%M"


def get_zone(tz_str: str) -> ZoneInfo:
    """Return a ZoneInfo instance or raise for invalid input."""

    try:
        return ZoneInfo(tz_str)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone: {tz_str}") from exc


def ensure_aware(dt: datetime, tz: tzinfo) -> datetime:
    """Attach or convert timezone information to a datetime."""

    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def from_epoch_seconds(raw: object) -> datetime | None:
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        return None
    if not math.isfinite(raw):
        return None
    try:
        return datetime.fromtimestamp(raw, UTC)
    except (OverflowError, OSError, ValueError):
        return None


def from_provider_text(raw: object) -> datetime | None:
    """Parse ``"2025-01-02 09:00:00"``-style stamps; naive values are UTC."""

    if not isinstance(raw, str) or not raw.strip():
        return None
    candidate = raw.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return ensure_aware(parsed, UTC)


def format_label(dt: datetime, tz: tzinfo) -> str:
    return ensure_aware(dt, tz).strftime(LABEL_FORMAT)
