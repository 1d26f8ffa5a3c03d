import pytest
from datetime import timedelta
from fastapi import HTTPException

from conftest import MONDAY, run_scenario, seed_employee
from timeledger.core.timesheets import service
from timeledger.core.timesheets.models import Timesheet, TimesheetEntry
from timeledger.core.timesheets.schemas import EntryCreate, EntryUpdate, TimesheetCreate
from timeledger.core.timesheets.status import Status


def _entry(role, company, start=None, end=None, hours=None, work_date=MONDAY, **extra):
    return EntryCreate(
        work_date=work_date, start_time=start, end_time=end, hours=hours,
        role_id=role.id, company_id=company.id, **extra,
    )


def test_week_start_must_be_monday():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, _, _ = await seed_employee(db)
                with pytest.raises(HTTPException) as exc:
                    await service.create_timesheet(
                        db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY + timedelta(days=1)), 1,
                    )
                assert exc.value.status_code == 400
    run_scenario(scenario)


def test_duplicate_week_rejected():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, _, _ = await seed_employee(db)
                data = TimesheetCreate(employee_id=employee.id, week_starting=MONDAY)
                sheet = await service.create_timesheet(db, data, 1)
                assert sheet.week_ending == MONDAY + timedelta(days=6)
                assert sheet.status == Status.OPEN
                with pytest.raises(HTTPException) as exc:
                    await service.create_timesheet(db, data, 1)
                assert exc.value.status_code == 400
    run_scenario(scenario)


def test_week_next_to_legacy_sunday_sheet_rejected():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, _, _ = await seed_employee(db)
                db.add(Timesheet(
                    employee_id=employee.id, week_starting=MONDAY - timedelta(days=1),
                    week_ending=MONDAY + timedelta(days=5), status=Status.OPEN,
                ))
                await db.flush()
                with pytest.raises(HTTPException) as exc:
                    await service.create_timesheet(
                        db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY), 1,
                    )
                assert exc.value.status_code == 400
                # The following week is unaffected
                sheet = await service.create_timesheet(
                    db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY + timedelta(days=7)), 1,
                )
                assert sheet.week_starting == MONDAY + timedelta(days=7)
    run_scenario(scenario)


def test_daily_cap_scenario():
    """maxDailyHours=8: break rule, then cap, then success."""
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db, max_daily_hours=8)
                sheet = await service.create_timesheet(
                    db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY), 1,
                )
                first = await service.create_entry(db, sheet, _entry(role, company, "09:00", "13:00"), 1)
                assert first.hours == 4

                with pytest.raises(HTTPException) as exc:
                    await service.create_entry(db, sheet, _entry(role, company, "13:15", "18:00"), 1)
                assert exc.value.status_code == 422
                assert exc.value.detail["message"] == "Validation failed"
                # Business rules accumulate: 4h + 4.75h also breaks the cap
                assert exc.value.detail["errors"] == [
                    "At least one 30-minute unpaid break is required when there are multiple entries in a day.",
                    "Total hours for this day would be 8.8h, exceeding the 8h daily limit.",
                ]

                with pytest.raises(HTTPException) as exc:
                    await service.create_entry(db, sheet, _entry(role, company, "13:30", "18:00"), 1)
                assert exc.value.status_code == 422
                assert exc.value.detail["errors"] == [
                    "Total hours for this day would be 8.5h, exceeding the 8h daily limit."
                ]

                second = await service.create_entry(db, sheet, _entry(role, company, "13:30", "17:30"), 1)
                assert second.hours == 4
                assert len(await service.list_entries(db, sheet.id)) == 2
    run_scenario(scenario)


def test_siblings_span_all_timesheets():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                sheet = await service.create_timesheet(
                    db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY), 1,
                )
                # Legacy sheet stored on the Sunday before, holding an entry for the same Monday
                legacy = Timesheet(
                    employee_id=employee.id, week_starting=MONDAY - timedelta(days=1),
                    week_ending=MONDAY + timedelta(days=5), status=Status.OPEN,
                )
                db.add(legacy)
                await db.flush()
                db.add(TimesheetEntry(
                    timesheet_id=legacy.id, work_date=MONDAY, start_time="09:00", end_time="12:00",
                    hours=3, role_id=role.id, company_id=company.id, status=Status.OPEN,
                ))
                await db.flush()
                with pytest.raises(HTTPException) as exc:
                    await service.create_entry(db, sheet, _entry(role, company, "11:00", "13:00"), 1)
                assert exc.value.status_code == 422
                assert any("Overlaps" in e and "Northside Primary" in e for e in exc.value.detail["errors"])
    run_scenario(scenario)


def test_update_revalidates_without_own_row():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                sheet = await service.create_timesheet(
                    db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY), 1,
                )
                entry = await service.create_entry(db, sheet, _entry(role, company, "09:00", "13:00"), 1)
                updated = await service.update_entry(
                    db, entry, sheet, EntryUpdate(start_time="09:30", end_time="14:00"), 1,
                )
                assert updated.hours == 4.5
                assert updated.start_time == "09:30"

                with pytest.raises(HTTPException) as exc:
                    await service.update_entry(db, entry, sheet, EntryUpdate(end_time="08:00"), 1)
                assert exc.value.status_code == 422
    run_scenario(scenario)


def test_hours_only_entry_and_travel_fields():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                sheet = await service.create_timesheet(
                    db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY), 1,
                )
                entry = await service.create_entry(db, sheet, _entry(
                    role, company, hours=1.5, entry_type="TRAVEL",
                    travel_from="Depot", travel_to="Northside Primary",
                ), 1)
                assert entry.start_time is None
                assert entry.hours == 1.5
                assert entry.ts_source is False
    run_scenario(scenario)


def test_travel_requires_endpoints():
    with pytest.raises(ValueError):
        EntryCreate(work_date=MONDAY, hours=1, role_id=1, company_id=1, entry_type="TRAVEL")


def test_entry_needs_times_or_hours():
    with pytest.raises(ValueError):
        EntryCreate(work_date=MONDAY, role_id=1, company_id=1)
    with pytest.raises(ValueError):
        EntryCreate(work_date=MONDAY, start_time="09:00", role_id=1, company_id=1)


# ── Edit/delete gate ──────────────────────────────────────────────────────────

def test_locked_entry_reports_entry_locked():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                sheet = await service.create_timesheet(
                    db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY), 1,
                )
                entry = await service.create_entry(db, sheet, _entry(role, company, "09:00", "13:00"), 1)
                await service.submit_timesheet(db, sheet.id, 1)
                assert entry.status == Status.SUBMITTED

                with pytest.raises(HTTPException) as exc:
                    await service.update_entry(db, entry, sheet, EntryUpdate(notes="late"), 1)
                assert exc.value.status_code == 409
                assert exc.value.detail["reason"] == "entry_locked"

                with pytest.raises(HTTPException) as exc:
                    await service.delete_entry(db, entry, sheet, 1)
                assert exc.value.detail["reason"] == "entry_locked"

                with pytest.raises(HTTPException) as exc:
                    await service.create_entry(db, sheet, _entry(role, company, "14:00", "15:00"), 1)
                assert exc.value.detail["reason"] == "timesheet_locked"
    run_scenario(scenario)


def test_external_ownership_reports_external_read_only():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                sheet = await service.create_timesheet(
                    db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY), 1,
                )
                entry = await service.create_entry(db, sheet, _entry(role, company, "09:00", "13:00"), 1)
                sheet.external_status = Status.APPROVED
                await db.flush()

                assert entry.status == Status.OPEN
                with pytest.raises(HTTPException) as exc:
                    await service.delete_entry(db, entry, sheet, 1)
                assert exc.value.status_code == 409
                assert exc.value.detail["reason"] == "external_read_only"
    run_scenario(scenario)


def test_delete_entry_while_open():
    async def scenario(factory):
        async with factory() as db:
            async with db.begin():
                employee, role, company = await seed_employee(db)
                sheet = await service.create_timesheet(
                    db, TimesheetCreate(employee_id=employee.id, week_starting=MONDAY), 1,
                )
                entry = await service.create_entry(db, sheet, _entry(role, company, "09:00", "13:00"), 1)
                await service.delete_entry(db, entry, sheet, 1)
                assert await service.list_entries(db, sheet.id) == []
                assert sheet.verified is False
    run_scenario(scenario)
