from datetime import date, timedelta

from timeledger.core.timesheets.validation import DayEntry, validate

MONDAY = date(2026, 2, 2)
SUNDAY = MONDAY + timedelta(days=6)


def _timed(start, end, hours, company="Northside Primary", id=None, work_date=MONDAY):
    return DayEntry(work_date=work_date, start_time=start, end_time=end, hours=hours, company_name=company, id=id)


def test_valid_single_entry():
    assert validate(_timed("09:00", "15:00", 6), [], MONDAY, SUNDAY) == []


def test_overlap_names_company():
    errors = validate(_timed("12:00", "14:00", 2), [_timed("09:00", "13:00", 4, company="Southbank College")], MONDAY, SUNDAY)
    assert any("Overlaps" in e and "Southbank College" in e for e in errors)


def test_overlap_checked_across_timesheets():
    # Siblings are whatever the caller passes for the employee-day, not one sheet's entries
    sibling = _timed("09:00", "12:00", 3, id=41)
    errors = validate(_timed("11:00", "12:00", 1), [sibling], MONDAY, SUNDAY)
    assert any("Overlaps" in e for e in errors)


def test_break_required_between_entries():
    sibling = _timed("09:00", "12:00", 3)
    errors = validate(_timed("12:15", "15:00", 2.75), [sibling], MONDAY, SUNDAY)
    assert errors == ["At least one 30-minute unpaid break is required when there are multiple entries in a day."]


def test_break_gap_anywhere_is_enough():
    siblings = [_timed("08:00", "10:00", 2), _timed("10:10", "12:00", 1.8333)]
    assert validate(_timed("12:30", "14:00", 1.5), siblings, MONDAY, SUNDAY) == []


def test_midnight_crossing_is_single_violation():
    errors = validate(_timed("18:00", "17:00", 0), [_timed("09:00", "10:00", 1)], MONDAY, SUNDAY)
    assert errors == ["End time must be after start time (entries cannot cross midnight)."]


def test_equal_times_rejected():
    errors = validate(_timed("09:00", "09:00", 0), [], MONDAY, SUNDAY)
    assert len(errors) == 1
    assert "cross midnight" in errors[0]


def test_late_start_rejected():
    errors = validate(_timed("23:00", "23:30", 0.5), [], MONDAY, SUNDAY)
    assert any("11:00 PM" in e for e in errors)


def test_entry_longer_than_twelve_hours():
    errors = validate(_timed("06:00", "19:00", 13), [], MONDAY, SUNDAY)
    assert any("12-hour maximum" in e for e in errors)


def test_date_outside_week():
    errors = validate(_timed("09:00", "10:00", 1, work_date=MONDAY + timedelta(days=7)), [], MONDAY, SUNDAY)
    assert errors == ["Entry date must be within the timesheet week (2026-02-02 - 2026-02-08)."]


def test_default_daily_cap_is_sixteen():
    siblings = [DayEntry(work_date=MONDAY, start_time=None, end_time=None, hours=12)]
    candidate = DayEntry(work_date=MONDAY, start_time=None, end_time=None, hours=5)
    errors = validate(candidate, siblings, MONDAY, SUNDAY)
    assert errors == ["Total hours for this day would be 17.0h, exceeding the 16h daily limit."]


def test_employee_daily_cap():
    errors = validate(_timed("13:30", "18:00", 4.5), [_timed("09:00", "13:00", 4)], MONDAY, SUNDAY, max_daily_hours=8)
    assert errors == ["Total hours for this day would be 8.5h, exceeding the 8h daily limit."]


def test_update_excludes_own_row():
    own = _timed("09:00", "13:00", 4, id=7)
    assert validate(_timed("09:30", "13:00", 3.5, id=7), [own], MONDAY, SUNDAY) == []


def test_other_days_ignored():
    tuesday = _timed("09:00", "17:00", 8, work_date=MONDAY + timedelta(days=1))
    assert validate(_timed("09:00", "17:00", 8), [tuesday], MONDAY, SUNDAY) == []
