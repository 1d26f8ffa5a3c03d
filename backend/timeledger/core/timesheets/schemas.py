from datetime import datetime, date
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal

from timeledger.core.timesheets.timeutils import format_hhmm, parse_hhmm

VALID_ENTRY_TYPES = Literal["GENERAL", "TRAVEL", "LEAVE"]


def _check_hhmm(value: str | None) -> str | None:
    if value is None or value == "":
        return None
    return format_hhmm(parse_hhmm(value))


# ── Timesheet ─────────────────────────────────────────────────────────────────

class TimesheetCreate(BaseModel):
    employee_id: int
    week_starting: date  # Must be Monday


class TimesheetRead(BaseModel):
    model_config = {"from_attributes": True}
    id: int
    employee_id: int
    week_starting: date
    week_ending: date
    status: str
    verified: bool
    auto_created: bool
    submitted_at: datetime | None
    approved_at: datetime | None
    approved_by: int | None
    external_period_id: str | None
    external_status: str | None
    external_synced_at: datetime | None
    created_at: datetime


class StatusOverride(BaseModel):
    status: str = Field(..., min_length=1)


class StatusRepairResult(BaseModel):
    timesheets_checked: int
    timesheets_touched: int
    entries_updated: int


# ── Entries ───────────────────────────────────────────────────────────────────

class EntryCreate(BaseModel):
    entry_type: VALID_ENTRY_TYPES = "GENERAL"
    work_date: date
    start_time: str | None = None
    end_time: str | None = None
    hours: float | None = Field(None, ge=0)
    role_id: int
    company_id: int
    notes: str | None = None
    private_notes: str | None = None
    starting_location: str | None = None
    travel_from: str | None = None
    travel_to: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def check_times(cls, value: str | None) -> str | None:
        return _check_hhmm(value)

    @model_validator(mode="after")
    def validate_shape(self) -> "EntryCreate":
        if bool(self.start_time) != bool(self.end_time):
            raise ValueError("start_time and end_time must be given together")
        if not self.start_time and self.hours is None:
            raise ValueError("Either start_time/end_time or hours must be provided")
        if self.entry_type == "TRAVEL" and (not self.travel_from or not self.travel_to):
            raise ValueError("travel_from and travel_to are required for travel entries")
        return self


class EntryUpdate(BaseModel):
    work_date: date | None = None
    start_time: str | None = None
    end_time: str | None = None
    hours: float | None = Field(None, ge=0)
    role_id: int | None = None
    company_id: int | None = None
    notes: str | None = None
    private_notes: str | None = None
    starting_location: str | None = None
    travel_from: str | None = None
    travel_to: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def check_times(cls, value: str | None) -> str | None:
        return _check_hhmm(value)

    def changes_time(self) -> bool:
        return any(
            v is not None for v in (self.work_date, self.start_time, self.end_time, self.hours)
        )


class EntryRead(BaseModel):
    model_config = {"from_attributes": True}
    id: int
    timesheet_id: int
    entry_type: str
    work_date: date
    start_time: str | None
    end_time: str | None
    hours: float
    role_id: int
    company_id: int
    status: str
    verified: bool
    ts_source: bool
    external_entry_id: str | None
    external_synced_at: datetime | None
    notes: str | None
    private_notes: str | None
    starting_location: str | None
    travel_from: str | None
    travel_to: str | None
    created_at: datetime


# ── Collaborator payload ──────────────────────────────────────────────────────

class EntrySnapshot(BaseModel):
    model_config = {"from_attributes": True}
    id: int
    entry_type: str
    work_date: date
    start_time: str | None
    end_time: str | None
    hours: float
    role_id: int
    company_id: int
    verified: bool


class TimesheetSnapshot(BaseModel):
    """Immutable copy handed to notification and payroll collaborators."""
    id: int
    employee_id: int
    employee_name: str
    employee_email: str
    week_starting: date
    week_ending: date
    status: str
    submitted_at: datetime | None
    approved_at: datetime | None
    approved_by: int | None
    total_hours: float
    entries: list[EntrySnapshot]
