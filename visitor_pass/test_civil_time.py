"""Facility civil time conversions (UTC+8, no DST)."""
from datetime import date, datetime, timezone

import pytest

from visitor_pass.domain.civil_time import (
    all_day_window,
    civil_today,
    to_absolute,
    to_civil_display,
    to_civil_time_display,
    to_naive_utc,
)

DAY = date(2026, 10, 20)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_named_times_resolve_in_facility_time():
    assert to_absolute(DAY, "morning") == utc(2026, 10, 20, 1, 0)
    assert to_absolute(DAY, "afternoon") == utc(2026, 10, 20, 6, 0)
    assert to_absolute(DAY, "evening") == utc(2026, 10, 20, 10, 0)


def test_hour_and_hhmm_selectors():
    assert to_absolute(DAY, 14) == utc(2026, 10, 20, 6, 0)
    assert to_absolute(DAY, "14:30") == utc(2026, 10, 20, 6, 30)
    # Early morning civil time falls on the previous UTC day
    assert to_absolute(DAY, "06:00") == utc(2026, 10, 19, 22, 0)


def test_now_rounds_up_to_next_quarter_hour():
    assert to_absolute(DAY, "now", now=utc(2026, 10, 20, 2, 7)) == utc(2026, 10, 20, 2, 15)
    assert to_absolute(DAY, "now", now=utc(2026, 10, 20, 2, 46, 30)) == utc(2026, 10, 20, 3, 0)


def test_now_on_boundary_is_unchanged():
    assert to_absolute(DAY, "now", now=utc(2026, 10, 20, 2, 0)) == utc(2026, 10, 20, 2, 0)


@pytest.mark.parametrize("selector", ["noon-ish", "25:00", 24, -1, True])
def test_unknown_selector_raises(selector):
    with pytest.raises(ValueError):
        to_absolute(DAY, selector)


def test_display_round_trip():
    assert to_civil_display(to_absolute(DAY, "morning")) == "2026-10-20 09:00 AM"
    instant = to_absolute(DAY, "14:30")
    assert to_civil_display(instant) == "2026-10-20 02:30 PM"
    assert to_civil_time_display(instant) == "02:30 PM"
    # naive values are treated as UTC
    assert to_civil_display(to_naive_utc(instant)) == "2026-10-20 02:30 PM"


def test_all_day_window_is_seven_to_eleven_local():
    start, end = all_day_window(DAY)
    assert start == utc(2026, 10, 19, 23, 0)
    assert end == utc(2026, 10, 20, 15, 0)
    assert to_civil_time_display(start) == "07:00 AM"
    assert to_civil_time_display(end) == "11:00 PM"


def test_civil_today_uses_facility_date():
    assert civil_today(utc(2026, 10, 19, 17, 0)) == date(2026, 10, 20)
    assert civil_today(utc(2026, 10, 19, 15, 59)) == date(2026, 10, 19)


def test_to_naive_utc_converts_aware_values():
    aware = datetime(2026, 10, 20, 10, 0, tzinfo=timezone.utc)
    assert to_naive_utc(aware) == datetime(2026, 10, 20, 10, 0)
    assert to_naive_utc(aware).tzinfo is None
