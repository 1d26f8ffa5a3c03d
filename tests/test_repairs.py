import pytest
from datetime import datetime, timedelta, timezone
from fastapi import HTTPException
from sqlalchemy import select

from conftest import MONDAY, run_scenario, seed_employee
from timeledger.core.sync import repair
from timeledger.core.sync.models import SyncLog
from timeledger.core.timesheets import service
from timeledger.core.timesheets.models import Timesheet, TimesheetEntry
from timeledger.core.timesheets.status import Status

TUESDAY = MONDAY + timedelta(days=1)


def _entry(sheet, role, company, day, hours, **extra):
    return TimesheetEntry(
        timesheet_id=sheet.id, work_date=day, hours=hours,
        role_id=role.id, company_id=company.id, status=sheet.status, **extra,
    )


def test_merge_keeps_fuller_sheet():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                # Older duplicate stored on the Sunday before
                small = Timesheet(employee_id=employee.id, week_starting=MONDAY - timedelta(days=1),
                                  week_ending=MONDAY + timedelta(days=5), status=Status.OPEN)
                full = Timesheet(employee_id=employee.id, week_starting=MONDAY,
                                 week_ending=MONDAY + timedelta(days=6), status=Status.OPEN)
                db.add_all([small, full])
                await db.flush()
                db.add_all([_entry(full, role, company, MONDAY + timedelta(days=d), 4) for d in range(3)])
                db.add(_entry(small, role, company, MONDAY + timedelta(days=3), 2))
                await db.flush()

                first = await repair.merge_duplicate_timesheets(db, actor_id=1)
                second = await repair.merge_duplicate_timesheets(db, actor_id=1)
                small_id, full_id = small.id, full.id

        async with factory() as db:
            sheets = (await db.execute(select(Timesheet))).scalars().all()
            entries = (await db.execute(select(TimesheetEntry))).scalars().all()
            logs = (await db.execute(select(SyncLog).where(SyncLog.sync_type == "TIMESHEET_MERGE"))).scalars().all()
        return first, second, small_id, full_id, list(sheets), list(entries), list(logs)

    first, second, small_id, full_id, sheets, entries, logs = run_scenario(scenario)
    assert first.timesheets_deleted == 1
    assert first.entries_moved == 1
    assert second.timesheets_deleted == 0
    assert [s.id for s in sheets] == [full_id]
    assert sheets[0].week_starting == MONDAY
    assert len(entries) == 4
    assert {e.timesheet_id for e in entries} == {full_id}
    assert small_id != full_id
    assert len(logs) == 2


def test_merge_tie_keeps_oldest_sheet():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                older = Timesheet(employee_id=employee.id, week_starting=MONDAY - timedelta(days=1),
                                  week_ending=MONDAY + timedelta(days=5), status=Status.SUBMITTED)
                db.add(older)
                await db.flush()
                newer = Timesheet(employee_id=employee.id, week_starting=MONDAY,
                                  week_ending=MONDAY + timedelta(days=6), status=Status.OPEN)
                db.add(newer)
                await db.flush()
                db.add(_entry(older, role, company, MONDAY, 4))
                db.add(_entry(newer, role, company, TUESDAY, 4))
                await db.flush()
                await repair.merge_duplicate_timesheets(db)

        async with factory() as db:
            sheets = (await db.execute(select(Timesheet))).scalars().all()
        return older.id, list(sheets)

    older_id, sheets = run_scenario(scenario)
    assert [s.id for s in sheets] == [older_id]
    assert sheets[0].status == Status.SUBMITTED
    assert sheets[0].week_starting == MONDAY



def _mixed_status_merge(full_status, legacy_status):
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                full = Timesheet(employee_id=employee.id, week_starting=MONDAY,
                                 week_ending=MONDAY + timedelta(days=6), status=full_status)
                legacy = Timesheet(employee_id=employee.id, week_starting=MONDAY - timedelta(days=1),
                                   week_ending=MONDAY + timedelta(days=5), status=legacy_status)
                db.add_all([full, legacy])
                await db.flush()
                db.add_all([_entry(full, role, company, MONDAY + timedelta(days=d), 4) for d in range(3)])
                moved = _entry(legacy, role, company, MONDAY + timedelta(days=3), 2)
                db.add(moved)
                await db.flush()
                await repair.merge_duplicate_timesheets(db)
                full_id, moved_id = full.id, moved.id

        async with factory() as db:
            sheet = await db.get(Timesheet, full_id)
            entries = (await db.execute(
                select(TimesheetEntry).where(TimesheetEntry.timesheet_id == full_id)
            )).scalars().all()
        return sheet, list(entries), moved_id

    return run_scenario(scenario)


def test_merge_moves_entries_under_approved_sheet_status():
    sheet, entries, moved_id = _mixed_status_merge(Status.APPROVED, Status.OPEN)
    assert sheet.status == Status.APPROVED
    assert len(entries) == 4
    assert {e.status for e in entries} == {Status.APPROVED}

    moved = next(e for e in entries if e.id == moved_id)
    with pytest.raises(HTTPException) as exc:
        service.assert_entry_mutable(moved, sheet)
    assert exc.value.status_code == 409
    assert exc.value.detail["reason"] == "entry_locked"


def test_merge_keeps_approval_from_smaller_duplicate():
    sheet, entries, _ = _mixed_status_merge(Status.OPEN, Status.APPROVED)
    assert sheet.status == Status.APPROVED
    assert {e.status for e in entries} == {Status.APPROVED}

def test_duplicate_cleanup_keeps_local_entry():
    early = datetime(2026, 2, 3, 6, 0, tzinfo=timezone.utc)
    late = datetime(2026, 2, 4, 6, 0, tzinfo=timezone.utc)

    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                sheet = Timesheet(employee_id=employee.id, week_starting=MONDAY,
                                  week_ending=MONDAY + timedelta(days=6), status=Status.OPEN)
                db.add(sheet)
                await db.flush()
                local = _entry(sheet, role, company, MONDAY, 4.0, start_time="09:00", end_time="13:00")
                db.add_all([
                    local,
                    _entry(sheet, role, company, MONDAY, 4.1, ts_source=True, verified=True,
                           external_entry_id="E1", external_synced_at=early),
                    _entry(sheet, role, company, MONDAY, 4.0, ts_source=True, verified=True,
                           external_entry_id="E2", external_synced_at=late),
                    _entry(sheet, role, company, TUESDAY, 8.0, ts_source=True, verified=True,
                           external_entry_id="E3", external_synced_at=late),
                ])
                await db.flush()

                first = await repair.cleanup_duplicate_entries(db, actor_id=1)
                second = await repair.cleanup_duplicate_entries(db, actor_id=1)
                local_id, sheet_id = local.id, sheet.id

        async with factory() as db:
            entries = (await db.execute(
                select(TimesheetEntry).where(TimesheetEntry.timesheet_id == sheet_id).order_by(TimesheetEntry.id)
            )).scalars().all()
            sheet = await db.get(Timesheet, sheet_id)
        return first, second, local_id, list(entries), sheet

    first, second, local_id, entries, sheet = run_scenario(scenario)
    assert first.entries_deleted == 2
    assert first.entries_verified == 1
    assert second.entries_deleted == 0
    assert [e.external_entry_id for e in entries] == ["E2", "E3"]
    kept = entries[0]
    assert kept.id == local_id
    assert kept.verified is True
    assert kept.ts_source is False
    assert (kept.start_time, kept.end_time) == ("09:00", "13:00")
    assert sheet.verified is True
