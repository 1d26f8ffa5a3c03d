import pytest
from datetime import date, datetime, timezone

from timeledger.core.timesheets.timeutils import (
    add_hours, hours_between, is_weekend, parse_duration, parse_hhmm, parse_local_date,
    timesheet_week_key, week_end, week_start,
)


def test_parse_local_date_ignores_utc_suffix():
    assert parse_local_date("2026-01-31T00:00:00.000Z") == date(2026, 1, 31)
    assert parse_local_date("2026-01-31") == date(2026, 1, 31)
    assert parse_local_date(datetime(2026, 1, 31, 23, 30, tzinfo=timezone.utc)) == date(2026, 1, 31)
    assert parse_local_date("") is None


def test_week_start_is_monday():
    assert week_start(date(2026, 2, 4)) == date(2026, 2, 2)
    assert week_start(date(2026, 2, 2)) == date(2026, 2, 2)
    assert week_start(date(2026, 2, 8)) == date(2026, 2, 2)


def test_week_start_alternate_boundary():
    # Sunday-start week, as some external calendars use
    assert week_start(date(2026, 2, 4), first_weekday=6) == date(2026, 2, 1)


def test_week_end_from_week_start():
    assert week_end(date(2026, 2, 2)) == date(2026, 2, 8)


def test_week_key_maps_sunday_forward():
    assert timesheet_week_key(date(2026, 2, 1)) == date(2026, 2, 2)
    assert timesheet_week_key(date(2026, 2, 2)) == date(2026, 2, 2)


def test_weekend_classification():
    assert is_weekend(date(2026, 2, 7))
    assert is_weekend(date(2026, 2, 8))
    assert not is_weekend(date(2026, 2, 6))


def test_hours_between():
    assert hours_between("09:00", "13:30") == 4.5
    assert hours_between("13:00", "13:00") is None
    assert hours_between("22:00", "02:00") is None
    assert hours_between(None, "10:00") is None


def test_parse_hhmm_rejects_out_of_range():
    assert parse_hhmm("08:30") == 510
    with pytest.raises(ValueError):
        parse_hhmm("24:10")


def test_add_hours_refuses_midnight():
    assert add_hours("08:30", 7.5) == "16:00"
    assert add_hours("20:00", 4) is None


def test_parse_duration():
    assert parse_duration("04:30:00") == 4.5
    assert parse_duration("02:15") == 2.25
    assert parse_duration("") == 0.0
