"""Helpers for clock readings, study-day rollover and step durations."""

import math
import re
from datetime import date, datetime, timedelta, timezone, tzinfo

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd])\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def ensure_aware(ts: datetime) -> datetime:
    """Interpret naive datetimes as UTC so comparisons never mix kinds."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def study_day(ts: datetime, tz: tzinfo, rollover_hour: int) -> date:
    """
    Get the study date a timestamp belongs to.

    The study day starts at the rollover hour, so with a 4 AM rollover
    2 AM counts toward the previous day.
    """
    local = ensure_aware(ts).astimezone(tz)
    return (local - timedelta(hours=rollover_hour)).date()


def round_days(days: float) -> int:
    """Round half up to whole days, never below one."""
    return max(1, math.floor(days + 0.5))


def parse_duration(text: str) -> timedelta:
    """
    Parse a step duration such as "10m", "1h", "1d" or "30s".

    Raises:
        ValueError: If the text is not a number followed by s/m/h/d.
    """
    m = _DURATION_RE.match(text)
    if not m:
        raise ValueError(f"Invalid duration '{text}' (expected e.g. 10m, 1h, 1d)")
    value, unit = float(m.group(1)), m.group(2).lower()
    return timedelta(seconds=value * _UNIT_SECONDS[unit])


def format_duration(step: timedelta) -> str:
    seconds = int(step.total_seconds())
    for unit in ("d", "h", "m"):
        size = _UNIT_SECONDS[unit]
        if seconds >= size and seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"
