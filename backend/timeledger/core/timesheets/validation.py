from dataclasses import dataclass
from datetime import date

from timeledger.core.timesheets.timeutils import hours_between, parse_hhmm

MAX_ENTRY_HOURS = 12
LATEST_START_MINUTES = 23 * 60
MIN_BREAK_MINUTES = 30
DEFAULT_MAX_DAILY_HOURS = 16.0


@dataclass
class DayEntry:
    """The slice of an entry the day rules look at."""
    work_date: date
    start_time: str | None
    end_time: str | None
    hours: float
    company_name: str | None = None
    id: int | None = None

    @property
    def is_timed(self) -> bool:
        return bool(self.start_time and self.end_time)


def validate(
    candidate: DayEntry,
    siblings: list[DayEntry],
    week_starting: date,
    week_ending: date,
    max_daily_hours: float | None = None,
) -> list[str]:
    """
    Check a candidate against its week and the employee's other entries.
    siblings may span all of the employee's timesheets; only same-day ones count,
    and the candidate's own id is ignored so updates can pass their old row in.
    Returns human-readable violations; empty means valid.
    """
    errors: list[str] = []

    if candidate.is_timed and hours_between(candidate.start_time, candidate.end_time) is None:
        return ["End time must be after start time (entries cannot cross midnight)."]

    hours = hours_between(candidate.start_time, candidate.end_time) if candidate.is_timed else candidate.hours
    start_m = parse_hhmm(candidate.start_time)
    end_m = parse_hhmm(candidate.end_time)

    if start_m is not None and start_m >= LATEST_START_MINUTES:
        errors.append("Start time cannot be 11:00 PM or later.")

    if hours > MAX_ENTRY_HOURS:
        errors.append(
            f"Entry duration of {hours:.1f} hours exceeds the "
            f"{MAX_ENTRY_HOURS}-hour maximum per entry."
        )

    if not (week_starting <= candidate.work_date <= week_ending):
        errors.append(
            f"Entry date must be within the timesheet week "
            f"({week_starting.isoformat()} - {week_ending.isoformat()})."
        )

    same_day = [
        s for s in siblings
        if s.work_date == candidate.work_date
        and (candidate.id is None or s.id != candidate.id)
    ]

    if candidate.is_timed:
        timed = [s for s in same_day if s.is_timed]
        for other in timed:
            other_start, other_end = parse_hhmm(other.start_time), parse_hhmm(other.end_time)
            if start_m < other_end and end_m > other_start:
                errors.append(
                    f"Overlaps with existing entry {other.start_time} - {other.end_time} "
                    f"({other.company_name or 'unknown company'})."
                )

        if timed and not _has_required_break(
            [(parse_hhmm(s.start_time), parse_hhmm(s.end_time)) for s in timed] + [(start_m, end_m)]
        ):
            errors.append(
                f"At least one {MIN_BREAK_MINUTES}-minute unpaid break is required "
                f"when there are multiple entries in a day."
            )

    cap = max_daily_hours or DEFAULT_MAX_DAILY_HOURS
    projected = sum(s.hours or 0 for s in same_day) + hours
    if projected > cap:
        errors.append(
            f"Total hours for this day would be {projected:.1f}h, "
            f"exceeding the {cap:g}h daily limit."
        )

    return errors


def _has_required_break(windows: list[tuple[int, int]]) -> bool:
    windows = sorted(windows)
    for (_, prev_end), (next_start, _) in zip(windows, windows[1:]):
        if next_start - prev_end >= MIN_BREAK_MINUTES:
            return True
    return False
