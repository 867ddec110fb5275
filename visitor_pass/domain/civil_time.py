"""Facility civil time <-> absolute instants.

The facility runs on one fixed UTC offset (no DST). Every persisted or
compared value is an absolute UTC instant; civil time exists only for input
selections and user-facing text.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union

from visitor_pass.config import settings

NAMED_TIMES = {
    "morning": time(9, 0),
    "afternoon": time(14, 0),
    "evening": time(18, 0),
}

ALL_DAY_START = time(7, 0)
ALL_DAY_END = time(23, 0)

QUARTER_HOUR = timedelta(minutes=15)

_HHMM = re.compile(r"^\s*([01]?\d|2[0-3]):([0-5]\d)\s*$")

Selector = Union[str, int]


def facility_tz(offset_hours: Optional[float] = None) -> timezone:
    hours = settings.facility_utc_offset_hours if offset_hours is None else offset_hours
    return timezone(timedelta(hours=hours))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """Normalize datetime for DB columns defined as TIMESTAMP WITHOUT TIME ZONE.

    If an aware datetime is provided, convert to UTC and drop tzinfo.
    If naive, assume it's already in UTC.
    """
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def as_aware_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def civil_today(now: Optional[datetime] = None) -> date:
    return as_aware_utc(now or utcnow()).astimezone(facility_tz()).date()


def _round_up_quarter(local: datetime) -> datetime:
    floored = local.replace(minute=(local.minute // 15) * 15, second=0, microsecond=0)
    if floored == local:
        return local
    return floored + QUARTER_HOUR


def _selector_time(selector: Selector) -> time:
    if isinstance(selector, bool):
        raise ValueError(f"Unknown time selector: {selector!r}")
    if isinstance(selector, int):
        if not 0 <= selector <= 23:
            raise ValueError(f"Hour out of range: {selector}")
        return time(selector, 0)

    key = selector.strip().lower()
    if key in NAMED_TIMES:
        return NAMED_TIMES[key]

    match = _HHMM.match(key)
    if match:
        return time(int(match.group(1)), int(match.group(2)))

    raise ValueError(f"Unknown time selector: {selector!r}")


def to_absolute(civil_date: date, selector: Selector, now: Optional[datetime] = None) -> datetime:
    """Resolve a civil selection on ``civil_date`` to an aware UTC instant.

    ``"now"`` ignores ``civil_date``: it takes the current instant and rounds
    it up to the next quarter-hour boundary in facility time.
    """
    tz = facility_tz()

    if isinstance(selector, str) and selector.strip().lower() == "now":
        local_now = as_aware_utc(now or utcnow()).astimezone(tz)
        return _round_up_quarter(local_now).astimezone(timezone.utc)

    local = datetime.combine(civil_date, _selector_time(selector), tzinfo=tz)
    return local.astimezone(timezone.utc)


def to_civil_display(instant: datetime) -> str:
    """Render an instant in facility time, e.g. '2026-10-20 02:00 PM'."""
    local = as_aware_utc(instant).astimezone(facility_tz())
    return local.strftime("%Y-%m-%d %I:%M %p")


def to_civil_time_display(instant: datetime) -> str:
    return as_aware_utc(instant).astimezone(facility_tz()).strftime("%I:%M %p")


def all_day_window(civil_date: date) -> Tuple[datetime, datetime]:
    start = to_absolute(civil_date, f"{ALL_DAY_START.hour:02d}:{ALL_DAY_START.minute:02d}")
    end = to_absolute(civil_date, f"{ALL_DAY_END.hour:02d}:{ALL_DAY_END.minute:02d}")
    return start, end
