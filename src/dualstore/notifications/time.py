"""Timezone and quiet-hours helpers for reminder scheduling.

Wall-clock conversions resolve the zone's offset for the specific calendar
date (IANA rules via ``zoneinfo``), so DST transitions are handled.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from datetime import time as dt_time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def parse_time(value: str) -> dt_time:
    """Parse ``HH:MM`` or ``HH:MM:SS``; missing parts default to zero."""
    parts = [int(part) for part in value.strip().split(":") if part != ""]
    hour, minute, second = (parts + [0, 0, 0])[:3]
    return dt_time(hour, minute, second)


def normalize_time(value: str | None, fallback: str) -> str:
    """Return ``HH:MM`` for stored values such as ``7:5`` or ``07:05:00``."""
    if not value:
        return fallback
    parsed = parse_time(value)
    return f"{parsed.hour:02d}:{parsed.minute:02d}"


def minutes_from_time(value: str | dt_time) -> int:
    parsed = parse_time(value) if isinstance(value, str) else value
    return parsed.hour * 60 + parsed.minute


def is_time_inside_quiet_hours(
    local_time: str | dt_time, quiet_start: str, quiet_end: str
) -> bool:
    """Return True if ``local_time`` falls in ``[quiet_start, quiet_end)``.

    ``start > end`` wraps past midnight; ``start == end`` is quiet all day.
    """
    value = minutes_from_time(local_time)
    start = minutes_from_time(quiet_start)
    end = minutes_from_time(quiet_end)

    if start == end:
        return True
    if start < end:
        return start <= value < end
    return value >= start or value < end


def is_valid_timezone(name: str | None) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_timezone(name: str | None, default: str) -> str:
    """Return ``name`` if it is a known IANA zone, else ``default``."""
    return name if name and is_valid_timezone(name) else default


def zoned_to_utc(local_date: date, local_time: str, timezone: str) -> datetime:
    """Convert a wall-clock time on ``local_date`` in ``timezone`` to a UTC instant."""
    wall = datetime.combine(local_date, parse_time(local_time), tzinfo=ZoneInfo(timezone))
    return wall.astimezone(UTC)


def date_in_zone(instant: datetime, timezone: str) -> date:
    return instant.astimezone(ZoneInfo(timezone)).date()


def time_in_zone(instant: datetime, timezone: str) -> str:
    """Local ``HH:MM`` of ``instant`` in ``timezone``."""
    local = instant.astimezone(ZoneInfo(timezone))
    return f"{local.hour:02d}:{local.minute:02d}"


def add_minutes(instant: datetime, minutes: int) -> datetime:
    return instant + timedelta(minutes=minutes)
