from datetime import date
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from timeledger.core.timesheets import service
from timeledger.core.timesheets.models import Timesheet
from timeledger.core.timesheets.schemas import (
    TimesheetCreate, TimesheetRead, StatusOverride, StatusRepairResult,
    EntryCreate, EntryUpdate, EntryRead,
)
from timeledger.dependencies import (
    get_db, get_current_user, require_admin, require_approver, CurrentUser,
)

router = APIRouter(tags=["timesheets"])


def _check_access(sheet: Timesheet, current: CurrentUser) -> None:
    if not current.can_approve and current.employee_id != sheet.employee_id:
        raise HTTPException(403, "Not your timesheet")


async def _load_sheet(db: AsyncSession, timesheet_id: int, current: CurrentUser) -> Timesheet:
    sheet = await service.get_timesheet(db, timesheet_id)
    if not sheet:
        raise HTTPException(404, "Timesheet not found")
    _check_access(sheet, current)
    return sheet


# ── Timesheets ────────────────────────────────────────────────────────────────

@router.post("/timesheets", response_model=TimesheetRead, status_code=201)
async def create_timesheet(
    data: TimesheetCreate,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    if not current.can_approve and current.employee_id != data.employee_id:
        raise HTTPException(403, "Not your timesheet")
    return await service.create_timesheet(db, data, current.user_id)


@router.get("/timesheets", response_model=list[TimesheetRead])
async def list_timesheets(
    employee_id: int | None = Query(None),
    status: str | None = Query(None),
    week_starting: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    if not current.can_approve:
        employee_id = current.employee_id
    return await service.list_timesheets(
        db, employee_id=employee_id, status=status, week_starting=week_starting,
    )


@router.get("/timesheets/{timesheet_id}", response_model=TimesheetRead)
async def get_timesheet(
    timesheet_id: int,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    return await _load_sheet(db, timesheet_id, current)


@router.delete("/timesheets/{timesheet_id}", status_code=204)
async def delete_timesheet(
    timesheet_id: int,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    sheet = await _load_sheet(db, timesheet_id, current)
    await service.delete_timesheet(db, sheet, current.user_id)


@router.post("/timesheets/{timesheet_id}/submit", response_model=TimesheetRead)
async def submit_timesheet(
    timesheet_id: int,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    await _load_sheet(db, timesheet_id, current)
    return await service.submit_timesheet(db, timesheet_id, current.user_id)


@router.post("/timesheets/{timesheet_id}/approve", response_model=TimesheetRead)
async def approve_timesheet(
    timesheet_id: int,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_approver),
):
    return await service.approve_timesheet(db, timesheet_id, current.user_id)


@router.post("/timesheets/{timesheet_id}/lock", response_model=TimesheetRead)
async def lock_timesheet(
    timesheet_id: int,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_admin),
):
    return await service.lock_timesheet(db, timesheet_id, current.user_id)


@router.post("/timesheets/{timesheet_id}/unlock", response_model=TimesheetRead)
async def unlock_timesheet(
    timesheet_id: int,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_admin),
):
    return await service.unlock_timesheet(db, timesheet_id, current.user_id)


@router.put("/timesheets/{timesheet_id}/status", response_model=TimesheetRead)
async def override_status(
    timesheet_id: int,
    data: StatusOverride,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_admin),
):
    return await service.override_status(db, timesheet_id, data.status, current.user_id)


@router.post("/admin/timesheets/repair-statuses", response_model=StatusRepairResult)
async def repair_statuses(
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_admin),
):
    return await service.repair_entry_statuses(db, current.user_id)


# ── Entries ───────────────────────────────────────────────────────────────────

@router.get("/timesheets/{timesheet_id}/entries", response_model=list[EntryRead])
async def list_entries(
    timesheet_id: int,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    await _load_sheet(db, timesheet_id, current)
    return await service.list_entries(db, timesheet_id)


@router.post("/timesheets/{timesheet_id}/entries", response_model=EntryRead, status_code=201)
async def create_entry(
    timesheet_id: int,
    data: EntryCreate,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    sheet = await _load_sheet(db, timesheet_id, current)
    return await service.create_entry(db, sheet, data, current.user_id)


@router.patch("/entries/{entry_id}", response_model=EntryRead)
async def update_entry(
    entry_id: int,
    data: EntryUpdate,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    entry = await service.get_entry(db, entry_id)
    if not entry:
        raise HTTPException(404, "Entry not found")
    sheet = await _load_sheet(db, entry.timesheet_id, current)
    return await service.update_entry(db, entry, sheet, data, current.user_id)


@router.delete("/entries/{entry_id}", status_code=204)
async def delete_entry(
    entry_id: int,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    entry = await service.get_entry(db, entry_id)
    if not entry:
        raise HTTPException(404, "Entry not found")
    sheet = await _load_sheet(db, entry.timesheet_id, current)
    await service.delete_entry(db, entry, sheet, current.user_id)
