"""
Calendar helpers. All dates are local calendar dates; nothing here consults the
machine timezone. Times of day are "HH:MM" strings, same-day only.
"""
from datetime import date, datetime, timedelta

MINUTES_PER_DAY = 24 * 60


def parse_local_date(value: str | date | datetime | None) -> date | None:
    """
    "2026-01-31", "2026-01-31T00:00:00.000Z" and datetimes all give 2026-01-31:
    only the calendar part is used, so a UTC suffix never shifts the day.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    year, month, day = (int(p) for p in value.split("T")[0].strip().split("-"))
    return date(year, month, day)


# ── Weeks ─────────────────────────────────────────────────────────────────────

def week_start(value: date, first_weekday: int = 0) -> date:
    """Start of the week containing value. first_weekday: 0=Monday … 6=Sunday."""
    return value - timedelta(days=(value.weekday() - first_weekday) % 7)


def week_end(start: date) -> date:
    return start + timedelta(days=6)


def timesheet_week_key(stored_week_starting: date) -> date:
    """
    Monday a stored week_starting belongs to. Legacy rows written through a
    UTC conversion carry the Sunday before; those map forward to that Monday.
    """
    if stored_week_starting.weekday() == 6:
        return stored_week_starting + timedelta(days=1)
    return week_start(stored_week_starting)


def is_weekend(value: date) -> bool:
    return value.weekday() >= 5


# ── Times and durations ───────────────────────────────────────────────────────

def parse_hhmm(value: str | None) -> int | None:
    """Minutes since midnight, or None."""
    if not value:
        return None
    hours, minutes = value.strip().split(":")[:2]
    h, m = int(hours), int(minutes)
    if not (0 <= h < 24 and 0 <= m < 60):
        raise ValueError(f"Invalid time of day '{value}'")
    return h * 60 + m


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def hours_between(start: str | None, end: str | None) -> float | None:
    """Same-day duration in hours; None when either is missing or end <= start."""
    start_m, end_m = parse_hhmm(start), parse_hhmm(end)
    if start_m is None or end_m is None or end_m <= start_m:
        return None
    return (end_m - start_m) / 60


def add_hours(start: str, hours: float) -> str | None:
    """start + hours as HH:MM, or None when that would cross midnight."""
    end_m = parse_hhmm(start) + round(hours * 60)
    if end_m >= MINUTES_PER_DAY:
        return None
    return format_hhmm(end_m)


def parse_duration(value: str | None) -> float:
    """ "04:30:00" -> 4.5, "02:15" -> 2.25, "" -> 0.0 """
    if not value:
        return 0.0
    parts = [int(p or 0) for p in value.strip().split(":")]
    h = parts[0] if len(parts) > 0 else 0
    m = parts[1] if len(parts) > 1 else 0
    s = parts[2] if len(parts) > 2 else 0
    return h + m / 60 + s / 3600
