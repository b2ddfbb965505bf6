from __future__ import annotations

import math
from datetime import datetime, timezone, tzinfo
from typing import Union

Timestamp = Union[datetime, int, float]

_MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

_MINUTE = 60
_HOUR = 3600
_DAY = 86400
_WEEK = 604800

INVALID_DATE = "Invalid Date"


def _to_epoch(value: Timestamp) -> float:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return float(value)


def _civil_month_day(days: int) -> tuple[int, int]:
    # proleptic Gregorian month/day for days since 1970-01-01, any year
    z = days + 719468
    era = z // 146097
    doe = z - era * 146097
    yoe = (doe - doe // 1460 + doe // 36524 - doe // 146096) // 365
    doy = doe - (365 * yoe + yoe // 4 - yoe // 100)
    mp = (5 * doy + 2) // 153
    day = doy - (153 * mp + 2) // 5 + 1
    month = mp + 3 if mp < 10 else mp - 9
    return month, day


def short_date(value: Timestamp, tz: tzinfo = timezone.utc) -> str:
    """en-US short form, e.g. ``Jan 5``.

    Epochs outside ``datetime``'s year range are still rendered; NaN and
    infinities have no calendar date and give ``"Invalid Date"``.
    """
    if isinstance(value, datetime):
        try:
            dt = (value if value.tzinfo else value.replace(tzinfo=timezone.utc)).astimezone(tz)
            return f"{_MONTH_ABBR[dt.month - 1]} {dt.day}"
        except OverflowError:
            value = _to_epoch(value)
    epoch = float(value)
    if not math.isfinite(epoch):
        return INVALID_DATE
    try:
        dt = datetime.fromtimestamp(epoch, tz=timezone.utc).astimezone(tz)
        return f"{_MONTH_ABBR[dt.month - 1]} {dt.day}"
    except (OverflowError, ValueError, OSError):
        offset = tz.utcoffset(None)
        shift = offset.total_seconds() if offset is not None else 0.0
        month, day = _civil_month_day(math.floor((epoch + shift) / _DAY))
        return f"{_MONTH_ABBR[month - 1]} {day}"


def time_ago(timestamp: Timestamp, now: Timestamp, *, tz: tzinfo = timezone.utc) -> str:
    """Format ``timestamp`` relative to ``now`` ("just now", "5m ago", "2h ago", "3d ago").

    Anything a week or older falls back to :func:`short_date`.  Future
    timestamps yield a negative elapsed time and read as "just now".
    """
    diff = _to_epoch(now) - _to_epoch(timestamp)
    # NaN matches no bucket and goes to the date fallback
    if not math.isnan(diff):
        if diff < _MINUTE:
            return "just now"
        if math.isfinite(diff):
            elapsed = math.floor(diff)
            if elapsed < _HOUR:
                return f"{elapsed // _MINUTE}m ago"
            if elapsed < _DAY:
                return f"{elapsed // _HOUR}h ago"
            if elapsed < _WEEK:
                return f"{elapsed // _DAY}d ago"
    return short_date(timestamp, tz)
