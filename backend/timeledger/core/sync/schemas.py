import json
from datetime import datetime, date
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from typing import Any

from timeledger.core.timesheets.timeutils import parse_local_date


# ── External source wire models ───────────────────────────────────────────────

class ExternalPeriod(BaseModel):
    id: str
    start_date: date = Field(validation_alias=AliasChoices("start_date", "startDate"))
    end_date: date = Field(validation_alias=AliasChoices("end_date", "endDate"))

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def calendar_part(cls, value: Any) -> Any:
        # "2026-01-31T00:00:00.000Z" is the 31st, whatever the offset
        return parse_local_date(value) if isinstance(value, str) else value


class ExternalRow(BaseModel):
    """One day-level attendance row. hours_logged is "HH:MM[:SS]"."""
    id: str
    worker_id: str = Field(validation_alias=AliasChoices("worker_id", "workerId"))
    entry_date: date = Field(validation_alias=AliasChoices("entry_date", "date"))
    hours_logged: str = Field("", validation_alias=AliasChoices("hours_logged", "durationString"))
    status: str | None = None
    school_name: str | None = Field(None, validation_alias=AliasChoices("school_name", "sourceLocationLabel"))
    notes: str | None = None

    @field_validator("id", "worker_id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("entry_date", mode="before")
    @classmethod
    def calendar_part(cls, value: Any) -> Any:
        return parse_local_date(value) if isinstance(value, str) else value


class ExternalWorker(BaseModel):
    model_config = {"extra": "allow"}
    id: str
    name: str | None = None
    email: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)


# ── Run results ───────────────────────────────────────────────────────────────

class SyncRunResult(BaseModel):
    success: bool
    skipped: bool = False
    status: str | None = None
    timesheetsCreated: int = 0
    timesheetsUpdated: int = 0
    entriesCreated: int = 0
    entriesUpdated: int = 0
    entriesMatched: int = 0
    weekendRowsSkipped: int = 0
    errors: list[str] = []
    duration: float = 0.0


class SyncStatusRead(BaseModel):
    state: str
    last_result: SyncRunResult | None
    last_started_at: datetime | None
    last_completed_at: datetime | None
    recent_failures: list[dict]


class RepairResult(BaseModel):
    sync_type: str
    timesheets_checked: int = 0
    timesheets_repaired: int = 0
    timesheets_deleted: int = 0
    entries_moved: int = 0
    entries_deleted: int = 0
    entries_verified: int = 0


# ── Logs ──────────────────────────────────────────────────────────────────────

class SyncLogRead(BaseModel):
    model_config = {"from_attributes": True}
    id: int
    sync_type: str
    status: str
    employee_id: int | None
    timesheet_id: int | None
    records_processed: int
    records_created: int
    records_updated: int
    records_skipped: int
    error_message: str | None
    details: dict | None = None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime

    @model_validator(mode="before")
    @classmethod
    def unpack_details(cls, data: Any) -> Any:
        raw = getattr(data, "details_json", None)
        if raw is None:
            return data
        return {
            **{k: getattr(data, k) for k in cls.model_fields if k != "details"},
            "details": json.loads(raw),
        }


class SyncLogPage(BaseModel):
    total: int
    limit: int
    offset: int
    items: list[SyncLogRead]
