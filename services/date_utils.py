"""Utilities for parsing and formatting timestamps and durations."""

from __future__ import annotations

import math
from datetime import datetime, timezone, tzinfo
from typing import Any, Optional

_MONTHS = [
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime, or None if it is not one.

    Accepts datetimes (naive values are taken as UTC), ISO-8601 strings and
    epoch milliseconds. Booleans and anything unparseable yield None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return coerce_timestamp(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def format_duration(milliseconds: Any) -> str:
    """Format a duration in ms as ``< 1 min``, ``12 min``, ``2h`` or ``1h 5m``."""
    try:
        ms = float(milliseconds)
    except (TypeError, ValueError):
        return "0 min"
    if not math.isfinite(ms) or ms <= 0:
        return "0 min"

    # half-up rounding
    minutes = int(ms / 60000 + 0.5)
    if minutes < 1:
        return "< 1 min"
    if minutes < 60:
        return f"{minutes} min"

    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f"{hours}h"
    return f"{hours}h {remaining}m"


def format_day_label(day: datetime) -> str:
    """Return a short chart label such as ``Oct 13``."""
    return f"{_MONTHS[day.month - 1]} {day.day}"


def format_timestamp(value: Any, tz: Optional[tzinfo] = None) -> Optional[str]:
    """Return ``Oct 13, 2026, 02:05 PM`` for a timestamp, or None if absent."""
    ts = coerce_timestamp(value)
    if ts is None:
        return None
    local = ts.astimezone(tz or timezone.utc)
    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return (
        f"{_MONTHS[local.month - 1]} {local.day}, {local.year}, "
        f"{hour:02d}:{local.minute:02d} {suffix}"
    )
