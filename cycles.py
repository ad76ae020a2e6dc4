"""Weekly raid cycle windows.

A cycle starts at a fixed weekday and hour in the cycle time zone (the raid
reset) and ends at the same local wall-clock time seven days later. All math
is done on the local calendar, so windows stay anchored to the reset hour
across daylight-saving changes.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

import config
from errors import ValidationError
from models import CycleWindow

Timestamp = Union[int, float, datetime]


def get_timezone() -> ZoneInfo:
    return ZoneInfo(config.CYCLE_TIMEZONE)


def to_epoch(value: Timestamp) -> float:
    """Normalize an epoch number or aware datetime to epoch seconds."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid timestamp {value!r}")
    if isinstance(value, datetime):
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValidationError("Naive datetimes are ambiguous, pass an aware datetime")
        return value.timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    raise ValidationError(f"Invalid timestamp {value!r}")


def _anchor(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time(hour=config.CYCLE_ANCHOR_HOUR), tzinfo=tz)


def window_containing(ts: Timestamp) -> CycleWindow:
    tz = get_timezone()
    epoch = to_epoch(ts)
    local = datetime.fromtimestamp(epoch, tz=tz)
    days_back = (local.weekday() - config.CYCLE_ANCHOR_WEEKDAY) % 7
    start_day = local.date() - timedelta(days=days_back)
    start = _anchor(start_day, tz)
    if epoch < start.timestamp():
        # Anchor weekday but before the reset hour: still the previous cycle.
        start_day -= timedelta(days=7)
        start = _anchor(start_day, tz)
    end = _anchor(start_day + timedelta(days=7), tz)
    return CycleWindow(start=start, end=end)


def next_window(ts: Timestamp) -> CycleWindow:
    current = window_containing(ts)
    tz = get_timezone()
    following_day = current.end.date() + timedelta(days=7)
    return CycleWindow(start=current.end, end=_anchor(following_day, tz))


def same_window(first: Timestamp, second: Timestamp) -> bool:
    return window_containing(first) == window_containing(second)


def current_window(now: Optional[Timestamp] = None) -> CycleWindow:
    if now is None:
        now = datetime.now(tz=get_timezone())
    return window_containing(now)


def format_window_label(window: CycleWindow) -> str:
    """Label like ``KW 41 · 08.10 08:00 → 15.10 08:00``."""
    week = window.start.isocalendar()[1]
    return (
        f"KW {week} · {window.start.strftime('%d.%m %H:%M')}"
        f" → {window.end.strftime('%d.%m %H:%M')}"
    )


__all__ = [
    "current_window",
    "format_window_label",
    "get_timezone",
    "next_window",
    "same_window",
    "to_epoch",
    "window_containing",
]
