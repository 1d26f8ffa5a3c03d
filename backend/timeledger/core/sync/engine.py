"""
Reconciliation of the external attendance feed into local timesheets.

One run: resolve the current external period, then for every tracked worker fetch
their rows, drop weekend rows, group by Monday week, find-or-create the week's
timesheet and merge each row into it. Workers run in their own transactions under
a bounded semaphore; one worker failing never cancels the others.

Status only ever moves forward (status.is_advance), and weeks already at or beyond
APPROVED are never imported into.
"""
import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timeledger.core.employees.models import Employee, EmployeeRole
from timeledger.core.employees.service import active_roles, list_tracked_workers, pick_role
from timeledger.core.sync import models as sync_models
from timeledger.core.sync.client import AttendanceSource, ExternalSourceError
from timeledger.core.sync.schemas import ExternalPeriod, ExternalRow, SyncRunResult
from timeledger.core.sync.service import log_sync
from timeledger.core.timesheets.models import Timesheet, TimesheetEntry
from timeledger.core.timesheets.service import cascade_status, recompute_verified
from timeledger.core.timesheets.status import (
    Status, highest_status, is_advance, is_finalized, map_external_status, raise_status,
)
from timeledger.core.timesheets.timeutils import (
    add_hours, hours_between, is_weekend, parse_duration, week_end, week_start,
)
from timeledger.db.base import utcnow
from timeledger.settings import get_settings

logger = logging.getLogger(__name__)

TOLERANCE_EPSILON = 1e-9


class RunState(StrEnum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    ERROR = "ERROR"


class ReconciliationError(Exception):
    """A single external row that cannot be mapped onto the local model."""


@dataclass
class RunTotals:
    rows_processed: int = 0
    rows_skipped: int = 0
    weekend_rows_skipped: int = 0
    timesheets_created: int = 0
    timesheets_updated: int = 0
    entries_created: int = 0
    entries_updated: int = 0
    entries_matched: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: "RunTotals") -> None:
        self.rows_processed += other.rows_processed
        self.rows_skipped += other.rows_skipped
        self.weekend_rows_skipped += other.weekend_rows_skipped
        self.timesheets_created += other.timesheets_created
        self.timesheets_updated += other.timesheets_updated
        self.entries_created += other.entries_created
        self.entries_updated += other.entries_updated
        self.entries_matched += other.entries_matched
        self.errors.extend(other.errors)


def schedule_window(employee: Employee, hours: float) -> tuple[str | None, str | None, float]:
    """
    Times for an externally sourced entry. Up to 4h sits in the morning window,
    longer days run from the morning start; both start at morning_start and end
    after the row's duration. A day that would run past midnight keeps no times.
    """
    start = employee.morning_start
    end = add_hours(start, hours) if hours > 0 else None
    if end is None:
        return None, None, hours
    return start, end, hours_between(start, end)


class ReconciliationEngine:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        source: AttendanceSource,
        concurrency: int | None = None,
        tolerance_hours: float | None = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.source = source
        self.concurrency = concurrency or settings.SYNC_WORKER_CONCURRENCY
        self.tolerance_hours = (
            tolerance_hours if tolerance_hours is not None else settings.FUZZY_MATCH_TOLERANCE_HOURS
        )
        self.state = RunState.IDLE
        self.last_outcome: RunState | None = None
        self.last_result: SyncRunResult | None = None
        self.last_started_at: datetime | None = None
        self.last_completed_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self.state == RunState.RUNNING

    async def run(self) -> SyncRunResult:
        # Guard is taken before the first await so two callers on the loop cannot both pass
        if self.running:
            logger.info("Reconciliation already running, skipping")
            return SyncRunResult(success=False, skipped=True, status="SKIPPED")
        self.state = RunState.RUNNING
        self.last_started_at = utcnow()
        try:
            result = await self._run(self.last_started_at)
        except Exception as exc:
            logger.exception("Reconciliation run failed")
            result = SyncRunResult(success=False, status=RunState.ERROR, errors=[str(exc)])
            await self._record(result, RunTotals(errors=[str(exc)]), self.last_started_at)
        finally:
            self.last_completed_at = utcnow()
            self.state = RunState.IDLE
        self.last_outcome = RunState(result.status)
        self.last_result = result
        return result

    async def _run(self, started_at: datetime) -> SyncRunResult:
        t0 = time.monotonic()
        try:
            period = await self.source.get_current_period()
        except ExternalSourceError as exc:
            logger.error("Could not resolve external period: %s", exc)
            period, reason = None, str(exc)
        else:
            reason = "External source returned no current period"

        if period is None:
            result = SyncRunResult(
                success=False, status=RunState.ERROR, errors=[reason],
                duration=round(time.monotonic() - t0, 3),
            )
            await self._record(result, RunTotals(errors=[reason]), started_at)
            return result

        async with self.session_factory() as db:
            workers = [(employee.id, worker_id) for employee, worker_id in await list_tracked_workers(db)]
        logger.info("Reconciling %d workers for period %s", len(workers), period.id)

        totals = RunTotals()
        semaphore = asyncio.Semaphore(self.concurrency)
        lock = asyncio.Lock()
        await asyncio.gather(*(
            self._sync_worker(employee_id, worker_id, period, totals, semaphore, lock)
            for employee_id, worker_id in workers
        ))

        status = RunState.PARTIAL if totals.errors else RunState.SUCCESS
        result = SyncRunResult(
            success=True,
            status=status,
            timesheetsCreated=totals.timesheets_created,
            timesheetsUpdated=totals.timesheets_updated,
            entriesCreated=totals.entries_created,
            entriesUpdated=totals.entries_updated,
            entriesMatched=totals.entries_matched,
            weekendRowsSkipped=totals.weekend_rows_skipped,
            errors=totals.errors,
            duration=round(time.monotonic() - t0, 3),
        )
        await self._record(result, totals, started_at, period)
        logger.info(
            "Reconciliation %s: %d sheets created, %d entries created, %d updated, %d matched, %d errors",
            status, totals.timesheets_created, totals.entries_created,
            totals.entries_updated, totals.entries_matched, len(totals.errors),
        )
        return result

    async def _record(
        self,
        result: SyncRunResult,
        totals: RunTotals,
        started_at: datetime,
        period: ExternalPeriod | None = None,
    ) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                await log_sync(
                    db,
                    sync_type=sync_models.FULL_SYNC,
                    status=result.status,
                    records_processed=totals.rows_processed,
                    records_created=totals.timesheets_created + totals.entries_created,
                    records_updated=totals.timesheets_updated + totals.entries_updated + totals.entries_matched,
                    records_skipped=totals.rows_skipped + totals.weekend_rows_skipped,
                    error_message="; ".join(totals.errors[:20]) or None,
                    details={**result.model_dump(), "period_id": period.id if period else None},
                    started_at=started_at,
                )

    # ── Per worker ────────────────────────────────────────────────────────────

    async def _sync_worker(
        self,
        employee_id: int,
        worker_id: str,
        period: ExternalPeriod,
        totals: RunTotals,
        semaphore: asyncio.Semaphore,
        lock: asyncio.Lock,
    ) -> None:
        async with semaphore:
            local = RunTotals()
            try:
                rows = await self.source.get_rows(worker_id, period.id)
                async with self.session_factory() as db:
                    async with db.begin():
                        await self._import_worker(db, employee_id, rows, period, local)
            except Exception as exc:
                logger.error("Reconciliation failed for employee %s", employee_id, exc_info=True)
                # Transaction rolled back; only the errors survive
                local = RunTotals(errors=local.errors + [f"Employee {employee_id}: {exc}"])
            async with lock:
                totals.merge(local)

    async def _import_worker(
        self,
        db: AsyncSession,
        employee_id: int,
        rows: list[ExternalRow],
        period: ExternalPeriod,
        totals: RunTotals,
    ) -> None:
        result = await db.execute(
            select(Employee).where(Employee.id == employee_id).with_for_update()
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise ReconciliationError(f"Employee {employee_id} no longer exists")
        roles = await active_roles(db, employee_id)
        now = utcnow()

        # Sheets other than the one being imported into whose entries this run touched
        touched: set[int] = set()
        by_week: dict = defaultdict(list)
        for row in rows:
            totals.rows_processed += 1
            if is_weekend(row.entry_date):
                totals.weekend_rows_skipped += 1
                continue
            by_week[week_start(row.entry_date)].append(row)

        for monday in sorted(by_week):
            week_rows = by_week[monday]
            external_status = highest_status(map_external_status(r.status) for r in week_rows)
            sheet, importable = await self.ensure_timesheet(
                db, employee_id, monday, external_status, period.id, now, totals,
            )
            if not importable:
                totals.rows_skipped += len(week_rows)
                continue
            for row in sorted(week_rows, key=lambda r: (r.entry_date, r.id)):
                try:
                    await self._import_row(db, employee, roles, sheet, row, now, totals, touched)
                except ReconciliationError as exc:
                    totals.errors.append(f"Row {row.id}: {exc}")
            await db.flush()
            await recompute_verified(db, sheet)
        await db.flush()

        for timesheet_id in sorted(touched):
            other = await db.get(Timesheet, timesheet_id)
            if other is not None:
                await recompute_verified(db, other)
        await db.flush()

    async def ensure_timesheet(
        self,
        db: AsyncSession,
        employee_id: int,
        monday,
        external_status: Status,
        period_id: str,
        now: datetime,
        totals: RunTotals,
    ) -> tuple[Timesheet, bool]:
        """
        Find-or-create the week's timesheet. Stored week_starting values may sit on
        the Sunday before, so the lookup is a one-day window rather than equality.
        Returns the sheet and whether rows may be imported into it.
        """
        result = await db.execute(
            select(Timesheet)
            .where(
                Timesheet.employee_id == employee_id,
                Timesheet.week_starting.between(monday - timedelta(days=1), monday),
            )
            .order_by(Timesheet.id)
            .with_for_update()
        )
        sheet = result.scalars().first()

        if sheet is None:
            sheet = Timesheet(
                employee_id=employee_id,
                week_starting=monday,
                week_ending=week_end(monday),
                status=external_status,
                verified=False,
                auto_created=True,
                external_period_id=period_id,
                external_status=external_status,
                external_synced_at=now,
            )
            db.add(sheet)
            await db.flush()
            totals.timesheets_created += 1
            return sheet, True

        finalized = is_finalized(sheet.status)
        changed = sheet.external_period_id != period_id or sheet.external_status != external_status
        sheet.external_period_id = period_id
        sheet.external_status = external_status
        sheet.external_synced_at = now
        if not finalized and is_advance(sheet.status, external_status):
            sheet.status = external_status
            await db.flush()
            await cascade_status(db, sheet)
            changed = True
        if changed:
            totals.timesheets_updated += 1
        return sheet, not finalized

    # ── Per row ───────────────────────────────────────────────────────────────

    async def _import_row(
        self,
        db: AsyncSession,
        employee: Employee,
        roles: list[EmployeeRole],
        sheet: Timesheet,
        row: ExternalRow,
        now: datetime,
        totals: RunTotals,
        touched: set[int],
    ) -> None:
        try:
            hours = parse_duration(row.hours_logged)
        except ValueError:
            raise ReconciliationError(f"unparseable duration '{row.hours_logged}'") from None
        if hours <= 0:
            totals.rows_skipped += 1
            return
        row_status = map_external_status(row.status)

        result = await db.execute(
            select(TimesheetEntry).where(TimesheetEntry.external_entry_id == row.id)
        )
        linked = result.scalar_one_or_none()
        if linked:
            if linked.timesheet_id != sheet.id:
                touched.add(linked.timesheet_id)
            if self._refresh_entry(linked, employee, sheet, row, hours, row_status, now):
                totals.entries_updated += 1
            return

        match = await self.find_fuzzy_match(db, employee.id, row, hours)
        if match:
            # Human-entered data stays; the row only confirms it
            match.verified = True
            match.external_entry_id = row.id
            match.external_synced_at = now
            await db.flush()
            if match.timesheet_id != sheet.id:
                touched.add(match.timesheet_id)
            totals.entries_matched += 1
            return

        role = pick_role(roles, row.school_name)
        if role is None:
            raise ReconciliationError(f"employee {employee.id} has no active role")
        start, end, entry_hours = schedule_window(employee, hours)
        db.add(TimesheetEntry(
            timesheet_id=sheet.id,
            entry_type="GENERAL",
            work_date=row.entry_date,
            start_time=start,
            end_time=end,
            hours=entry_hours,
            role_id=role.role_id,
            company_id=role.company_id,
            status=raise_status(sheet.status, row_status),
            verified=True,
            ts_source=True,
            external_entry_id=row.id,
            external_synced_at=now,
            notes=row.notes,
        ))
        await db.flush()
        totals.entries_created += 1

    def _refresh_entry(
        self,
        entry: TimesheetEntry,
        employee: Employee,
        sheet: Timesheet,
        row: ExternalRow,
        hours: float,
        row_status: Status,
        now: datetime,
    ) -> bool:
        """Returns True when anything other than the sync timestamp changed."""
        changed = False
        if entry.ts_source and entry.timesheet_id == sheet.id:
            start, end, entry_hours = schedule_window(employee, hours)
            desired = {
                "work_date": row.entry_date,
                "start_time": start,
                "end_time": end,
                "hours": entry_hours,
                "notes": row.notes,
            }
            for name, value in desired.items():
                if getattr(entry, name) != value:
                    setattr(entry, name, value)
                    changed = True
            confirmed = True
        else:
            # Local data stays; it counts as verified only while its hours agree with the row
            confirmed = abs(entry.hours - hours) <= self.tolerance_hours + TOLERANCE_EPSILON

        new_status = raise_status(entry.status, row_status)
        if new_status != entry.status:
            entry.status = new_status
            changed = True
        if entry.verified != confirmed:
            entry.verified = confirmed
            changed = True
        entry.external_synced_at = now
        return changed

    async def find_fuzzy_match(
        self,
        db: AsyncSession,
        employee_id: int,
        row: ExternalRow,
        hours: float,
    ) -> TimesheetEntry | None:
        """First (lowest id) local, unverified, unlinked entry on the row's date within tolerance."""
        result = await db.execute(
            select(TimesheetEntry)
            .join(Timesheet, Timesheet.id == TimesheetEntry.timesheet_id)
            .where(
                Timesheet.employee_id == employee_id,
                TimesheetEntry.work_date == row.entry_date,
                TimesheetEntry.ts_source.is_(False),
                TimesheetEntry.verified.is_(False),
                TimesheetEntry.external_entry_id.is_(None),
            )
            .order_by(TimesheetEntry.id)
        )
        for candidate in result.scalars().all():
            if abs(candidate.hours - hours) <= self.tolerance_hours + TOLERANCE_EPSILON:
                return candidate
        return None


async def run_periodically(engine: ReconciliationEngine, interval_minutes: int) -> None:
    """Scheduled sync loop; cancelled on application shutdown."""
    while True:
        try:
            await engine.run()
        except Exception:
            logger.exception("Scheduled reconciliation failed")
        await asyncio.sleep(interval_minutes * 60)
