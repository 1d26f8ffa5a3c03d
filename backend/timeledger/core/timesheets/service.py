from datetime import date, datetime, timedelta, timezone
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from timeledger.core.audit.service import audit
from timeledger.core.companies.models import Approver, Company
from timeledger.core.employees.models import Employee
from timeledger.core.notifications.dispatcher import dispatcher
from timeledger.core.notifications.service import (
    TIMESHEET_APPROVED, TIMESHEET_SUBMITTED, collaborators,
)
from timeledger.core.timesheets.models import Timesheet, TimesheetEntry
from timeledger.core.timesheets.schemas import (
    TimesheetCreate, EntryCreate, EntryUpdate,
    EntrySnapshot, TimesheetSnapshot, StatusRepairResult,
)
from timeledger.core.timesheets.status import (
    Status, APPROVABLE_STATUSES, EDITABLE_STATUSES, SUBMITTABLE_STATUSES,
    edit_block_reason, parse_status, timesheet_locked_externally,
)
from timeledger.core.timesheets.timeutils import hours_between, week_end
from timeledger.core.timesheets.validation import DayEntry, validate
from timeledger.settings import get_settings


# ── Error helpers ─────────────────────────────────────────────────────────────

def _not_found(what: str):
    from fastapi import HTTPException
    return HTTPException(404, f"{what} not found")


def _validation_failed(errors: list[str]):
    from fastapi import HTTPException
    return HTTPException(422, {"message": "Validation failed", "errors": errors})


def _state_conflict(reason: str, message: str):
    from fastapi import HTTPException
    return HTTPException(409, {"message": message, "reason": reason})


def assert_entry_mutable(entry: TimesheetEntry, sheet: Timesheet) -> None:
    """Edit/delete gate: local entry status and external week ownership, reported separately."""
    blocked = edit_block_reason(entry.status, sheet.external_status)
    if blocked:
        raise _state_conflict(*blocked)


def _assert_accepts_entries(sheet: Timesheet) -> None:
    if sheet.status not in EDITABLE_STATUSES:
        raise _state_conflict(
            "timesheet_locked",
            f"Cannot change entries on timesheet with status '{sheet.status}'",
        )
    if timesheet_locked_externally(sheet.external_status):
        raise _state_conflict(
            "external_read_only",
            f"Timesheet is read-only: the external system reports status '{sheet.external_status}'",
        )


# ── Timesheets ────────────────────────────────────────────────────────────────

async def create_timesheet(
    db: AsyncSession,
    data: TimesheetCreate,
    created_by: int,
) -> Timesheet:
    from fastapi import HTTPException
    if data.week_starting.weekday() != 0:
        raise HTTPException(400, "week_starting must be a Monday")

    employee = await db.get(Employee, data.employee_id)
    if not employee:
        raise _not_found("Employee")

    # Legacy rows may carry the Sunday before the week's Monday
    existing = await db.execute(
        select(Timesheet.id).where(
            Timesheet.employee_id == data.employee_id,
            Timesheet.week_starting.between(data.week_starting - timedelta(days=1), data.week_starting),
        )
    )
    if existing.scalars().first():
        raise HTTPException(400, "Timesheet for this week already exists")

    sheet = Timesheet(
        employee_id=data.employee_id,
        week_starting=data.week_starting,
        week_ending=week_end(data.week_starting),
        status=Status.OPEN,
        verified=False,
        auto_created=False,
    )
    db.add(sheet)
    await db.flush()

    await audit(actor_id=created_by, action="timesheet.create", resource_type="timesheet",
        resource_id=sheet.id, detail={"week_starting": str(data.week_starting), "employee_id": data.employee_id},
    )
    await db.refresh(sheet)
    return sheet


async def get_timesheet(db: AsyncSession, timesheet_id: int) -> Timesheet | None:
    result = await db.execute(select(Timesheet).where(Timesheet.id == timesheet_id))
    return result.scalar_one_or_none()


async def get_timesheet_locked(db: AsyncSession, timesheet_id: int) -> Timesheet | None:
    """Row-level lock for state transitions."""
    result = await db.execute(
        select(Timesheet).where(Timesheet.id == timesheet_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def list_timesheets(
    db: AsyncSession,
    employee_id: int | None = None,
    status: str | None = None,
    week_starting: date | None = None,
) -> list[Timesheet]:
    q = select(Timesheet)
    if employee_id:
        q = q.where(Timesheet.employee_id == employee_id)
    if status:
        q = q.where(Timesheet.status == status)
    if week_starting:
        q = q.where(Timesheet.week_starting == week_starting)
    q = q.order_by(Timesheet.week_starting.desc(), Timesheet.id)
    result = await db.execute(q)
    return list(result.scalars().all())


async def delete_timesheet(db: AsyncSession, sheet: Timesheet, deleted_by: int) -> None:
    _assert_accepts_entries(sheet)
    entries = await list_entries(db, sheet.id)
    for entry in entries:
        await db.delete(entry)
    await db.delete(sheet)
    await db.flush()
    await audit(actor_id=deleted_by, action="timesheet.delete", resource_type="timesheet",
        resource_id=sheet.id, detail={"entries_deleted": len(entries)},
    )


async def recompute_verified(db: AsyncSession, sheet: Timesheet) -> bool:
    """Timesheet is verified iff it has entries and every one of them is verified."""
    result = await db.execute(
        select(TimesheetEntry.verified).where(TimesheetEntry.timesheet_id == sheet.id)
    )
    flags = list(result.scalars().all())
    sheet.verified = bool(flags) and all(flags)
    return sheet.verified


async def build_snapshot(db: AsyncSession, sheet: Timesheet) -> TimesheetSnapshot:
    employee = await db.get(Employee, sheet.employee_id)
    entries = await list_entries(db, sheet.id)
    return TimesheetSnapshot(
        id=sheet.id,
        employee_id=sheet.employee_id,
        employee_name=employee.full_name if employee else "",
        employee_email=employee.email if employee else "",
        week_starting=sheet.week_starting,
        week_ending=sheet.week_ending,
        status=sheet.status,
        submitted_at=sheet.submitted_at,
        approved_at=sheet.approved_at,
        approved_by=sheet.approved_by,
        total_hours=round(sum(e.hours for e in entries), 2),
        entries=[EntrySnapshot.model_validate(e) for e in entries],
    )


# ── State machine ─────────────────────────────────────────────────────────────

async def cascade_status(db: AsyncSession, sheet: Timesheet) -> int:
    """Copy the sheet's status onto every entry; returns how many changed."""
    changed = 0
    for entry in await list_entries(db, sheet.id):
        if entry.status != sheet.status:
            entry.status = sheet.status
            changed += 1
    await db.flush()
    return changed


async def submit_timesheet(
    db: AsyncSession,
    timesheet_id: int,
    submitted_by: int,
) -> Timesheet:
    from fastapi import HTTPException
    sheet = await get_timesheet_locked(db, timesheet_id)
    if not sheet:
        raise _not_found("Timesheet")

    # Idempotent
    if sheet.status == Status.SUBMITTED:
        return sheet
    if sheet.status not in SUBMITTABLE_STATUSES:
        raise _state_conflict("timesheet_locked", f"Cannot submit timesheet with status '{sheet.status}'")

    entry_count = await db.scalar(
        select(func.count(TimesheetEntry.id)).where(TimesheetEntry.timesheet_id == sheet.id)
    )
    if not entry_count:
        raise HTTPException(400, "Cannot submit timesheet with no entries")

    sheet.status = Status.SUBMITTED
    sheet.submitted_at = datetime.now(timezone.utc)
    await db.flush()
    await cascade_status(db, sheet)

    await audit(actor_id=submitted_by, action="timesheet.submit", resource_type="timesheet",
        resource_id=sheet.id, detail={"entries": entry_count},
    )

    snapshot = await build_snapshot(db, sheet)
    company_ids = sorted({e.company_id for e in snapshot.entries})
    approvers = await db.execute(select(Approver).where(Approver.company_id.in_(company_ids)))
    for email in sorted({a.email for a in approvers.scalars().all()}):
        dispatcher.defer(db, f"{TIMESHEET_SUBMITTED}:{sheet.id}:{email}",
            collaborators.notifier.notify, TIMESHEET_SUBMITTED, email, snapshot)

    await db.refresh(sheet)
    return sheet


async def approve_timesheet(
    db: AsyncSession,
    timesheet_id: int,
    approved_by: int,
) -> Timesheet:
    sheet = await get_timesheet_locked(db, timesheet_id)
    if not sheet:
        raise _not_found("Timesheet")

    # Idempotent
    if sheet.status == Status.APPROVED:
        return sheet
    if sheet.status not in APPROVABLE_STATUSES:
        raise _state_conflict("timesheet_locked", f"Cannot approve timesheet with status '{sheet.status}'")

    sheet.status = Status.APPROVED
    sheet.approved_at = datetime.now(timezone.utc)
    sheet.approved_by = approved_by
    await db.flush()
    await cascade_status(db, sheet)

    await audit(actor_id=approved_by, action="timesheet.approve", resource_type="timesheet",
        resource_id=sheet.id, detail={},
    )

    snapshot = await build_snapshot(db, sheet)
    if snapshot.employee_email:
        dispatcher.defer(db, f"{TIMESHEET_APPROVED}:{sheet.id}",
            collaborators.notifier.notify, TIMESHEET_APPROVED, snapshot.employee_email, snapshot)
    if collaborators.payroll is not None:
        dispatcher.defer(db, f"payroll_sync:{sheet.id}", collaborators.payroll.push, snapshot)

    await db.refresh(sheet)
    return sheet


async def _force_status(
    db: AsyncSession,
    timesheet_id: int,
    status: Status,
    actor_id: int,
    action: str,
) -> Timesheet:
    sheet = await get_timesheet_locked(db, timesheet_id)
    if not sheet:
        raise _not_found("Timesheet")
    previous = sheet.status
    sheet.status = status
    await db.flush()
    cascaded = await cascade_status(db, sheet)

    await audit(actor_id=actor_id, action=action, resource_type="timesheet",
        resource_id=sheet.id, detail={"from": previous, "to": str(status), "entries": cascaded},
    )
    await db.refresh(sheet)
    return sheet


async def lock_timesheet(db: AsyncSession, timesheet_id: int, locked_by: int) -> Timesheet:
    return await _force_status(db, timesheet_id, Status.LOCKED, locked_by, "timesheet.lock")


async def unlock_timesheet(db: AsyncSession, timesheet_id: int, unlocked_by: int) -> Timesheet:
    sheet = await get_timesheet(db, timesheet_id)
    if not sheet:
        raise _not_found("Timesheet")
    if sheet.status != Status.LOCKED:
        raise _state_conflict("timesheet_locked", f"Only locked timesheets can be unlocked. Current status: '{sheet.status}'")
    return await _force_status(db, timesheet_id, Status.UNLOCKED, unlocked_by, "timesheet.unlock")


async def override_status(db: AsyncSession, timesheet_id: int, value: str, actor_id: int) -> Timesheet:
    from fastapi import HTTPException
    try:
        status = parse_status(value)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return await _force_status(db, timesheet_id, status, actor_id, "timesheet.status_override")


async def repair_entry_statuses(db: AsyncSession, actor_id: int | None = None) -> StatusRepairResult:
    """Force every entry's status to its timesheet's. Idempotent."""
    result = await db.execute(select(Timesheet).order_by(Timesheet.id))
    sheets = list(result.scalars().all())
    touched = 0
    entries_updated = 0
    for sheet in sheets:
        changed = await cascade_status(db, sheet)
        if changed:
            touched += 1
            entries_updated += changed
    await db.flush()

    outcome = StatusRepairResult(
        timesheets_checked=len(sheets),
        timesheets_touched=touched,
        entries_updated=entries_updated,
    )
    from timeledger.core.sync.service import log_sync
    await log_sync(db, sync_type="STATUS_REPAIR", status="SUCCESS",
        records_processed=len(sheets), records_updated=entries_updated,
        details=outcome.model_dump(),
    )
    await audit(actor_id=actor_id, action="timesheet.repair_statuses", resource_type="timesheet",
        detail=outcome.model_dump(),
    )
    return outcome


# ── Entries ───────────────────────────────────────────────────────────────────

async def _lock_employee(db: AsyncSession, employee_id: int) -> Employee:
    """Serialises interactive writes for one employee so the day rules see every sibling."""
    result = await db.execute(
        select(Employee).where(Employee.id == employee_id).with_for_update()
    )
    employee = result.scalar_one_or_none()
    if not employee:
        raise _not_found("Employee")
    return employee


async def load_day_siblings(db: AsyncSession, employee_id: int, work_date: date) -> list[DayEntry]:
    """Entries of one employee on one date, across all of that employee's timesheets."""
    result = await db.execute(
        select(TimesheetEntry, Company.name)
        .join(Timesheet, Timesheet.id == TimesheetEntry.timesheet_id)
        .outerjoin(Company, Company.id == TimesheetEntry.company_id)
        .where(
            Timesheet.employee_id == employee_id,
            TimesheetEntry.work_date == work_date,
        )
    )
    return [
        DayEntry(
            work_date=entry.work_date,
            start_time=entry.start_time,
            end_time=entry.end_time,
            hours=entry.hours,
            company_name=company_name,
            id=entry.id,
        )
        for entry, company_name in result.all()
    ]


async def _check_entry(
    db: AsyncSession,
    sheet: Timesheet,
    employee: Employee,
    candidate: DayEntry,
) -> None:
    siblings = await load_day_siblings(db, sheet.employee_id, candidate.work_date)
    max_daily = employee.max_daily_hours or get_settings().DEFAULT_MAX_DAILY_HOURS
    errors = validate(candidate, siblings, sheet.week_starting, sheet.week_ending, max_daily)
    if errors:
        raise _validation_failed(errors)


async def create_entry(
    db: AsyncSession,
    sheet: Timesheet,
    data: EntryCreate,
    created_by: int,
) -> TimesheetEntry:
    _assert_accepts_entries(sheet)
    employee = await _lock_employee(db, sheet.employee_id)

    if data.start_time and data.end_time:
        hours = hours_between(data.start_time, data.end_time)
        if hours is None:
            raise _validation_failed(["End time must be after start time (entries cannot cross midnight)."])
    else:
        hours = data.hours

    await _check_entry(db, sheet, employee, DayEntry(
        work_date=data.work_date, start_time=data.start_time, end_time=data.end_time, hours=hours,
    ))

    entry = TimesheetEntry(
        timesheet_id=sheet.id,
        **data.model_dump(exclude={"hours"}),
        hours=hours,
        status=sheet.status,
        verified=False,
        ts_source=False,
    )
    db.add(entry)
    await db.flush()
    await recompute_verified(db, sheet)

    await audit(actor_id=created_by, action="entry.create", resource_type="timesheet_entry",
        resource_id=entry.id, detail={"work_date": str(data.work_date), "hours": hours},
    )
    await db.refresh(entry)
    return entry


async def update_entry(
    db: AsyncSession,
    entry: TimesheetEntry,
    sheet: Timesheet,
    data: EntryUpdate,
    updated_by: int,
) -> TimesheetEntry:
    assert_entry_mutable(entry, sheet)

    changes = data.model_dump(exclude_unset=True)
    new_date = data.work_date or entry.work_date
    new_start = changes["start_time"] if "start_time" in changes else entry.start_time
    new_end = changes["end_time"] if "end_time" in changes else entry.end_time
    if bool(new_start) != bool(new_end):
        raise _validation_failed(["Start time and end time must be given together."])

    if new_start and new_end:
        new_hours = hours_between(new_start, new_end)
        if new_hours is None:
            raise _validation_failed(["End time must be after start time (entries cannot cross midnight)."])
    else:
        new_hours = data.hours if data.hours is not None else entry.hours

    if data.changes_time():
        employee = await _lock_employee(db, sheet.employee_id)
        await _check_entry(db, sheet, employee, DayEntry(
            work_date=new_date, start_time=new_start, end_time=new_end, hours=new_hours, id=entry.id,
        ))

    if new_date != entry.work_date or abs(new_hours - entry.hours) > 1e-9:
        # Hours no longer match what the external source confirmed
        entry.verified = False
    entry.work_date = new_date
    entry.start_time = new_start
    entry.end_time = new_end
    entry.hours = new_hours
    for field in ("role_id", "company_id", "notes", "private_notes",
                  "starting_location", "travel_from", "travel_to"):
        if field in changes and changes[field] is not None:
            setattr(entry, field, changes[field])
    await db.flush()
    await recompute_verified(db, sheet)

    await audit(actor_id=updated_by, action="entry.update", resource_type="timesheet_entry",
        resource_id=entry.id, detail={"hours": entry.hours},
    )
    await db.refresh(entry)
    return entry


async def delete_entry(
    db: AsyncSession,
    entry: TimesheetEntry,
    sheet: Timesheet,
    deleted_by: int,
) -> None:
    assert_entry_mutable(entry, sheet)
    entry_id = entry.id
    await db.delete(entry)
    await db.flush()
    await recompute_verified(db, sheet)

    await audit(actor_id=deleted_by, action="entry.delete", resource_type="timesheet_entry",
        resource_id=entry_id, detail={},
    )


async def get_entry(db: AsyncSession, entry_id: int) -> TimesheetEntry | None:
    result = await db.execute(select(TimesheetEntry).where(TimesheetEntry.id == entry_id))
    return result.scalar_one_or_none()


async def list_entries(db: AsyncSession, timesheet_id: int) -> list[TimesheetEntry]:
    result = await db.execute(
        select(TimesheetEntry).where(
            TimesheetEntry.timesheet_id == timesheet_id,
        ).order_by(TimesheetEntry.work_date, TimesheetEntry.start_time, TimesheetEntry.id)
    )
    return list(result.scalars().all())
