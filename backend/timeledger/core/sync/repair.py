"""
On-demand repair passes. Neither runs as part of a normal sync; both are
idempotent, so a second run over repaired data changes nothing.
"""
import logging
from collections import defaultdict

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from timeledger.core.audit.service import audit
from timeledger.core.sync import models as sync_models
from timeledger.core.sync.schemas import RepairResult
from timeledger.core.sync.service import log_sync
from timeledger.core.timesheets.models import Timesheet, TimesheetEntry
from timeledger.core.timesheets.service import cascade_status, list_entries, recompute_verified
from timeledger.core.timesheets.status import highest_status, is_advance
from timeledger.core.timesheets.timeutils import timesheet_week_key, week_end
from timeledger.db.base import utcnow
from timeledger.settings import get_settings

logger = logging.getLogger(__name__)

TOLERANCE_EPSILON = 1e-9


def _synced_key(entry: TimesheetEntry) -> tuple[float, int]:
    synced = entry.external_synced_at.timestamp() if entry.external_synced_at else 0.0
    return synced, entry.id


# ── Duplicate entries ─────────────────────────────────────────────────────────

async def cleanup_duplicate_entries(
    db: AsyncSession,
    tolerance_hours: float | None = None,
    actor_id: int | None = None,
) -> RepairResult:
    """
    Where a locally authored entry and externally sourced entries describe the same
    work (same date, hours within tolerance), drop the externally sourced copies and
    keep the local one, verified and linked to the most recently synced copy's id.
    """
    if tolerance_hours is None:
        tolerance_hours = get_settings().FUZZY_MATCH_TOLERANCE_HOURS
    started_at = utcnow()

    local_sheets = select(TimesheetEntry.timesheet_id).where(TimesheetEntry.ts_source.is_(False))
    sourced_sheets = select(TimesheetEntry.timesheet_id).where(TimesheetEntry.ts_source.is_(True))
    result = await db.execute(
        select(Timesheet)
        .where(Timesheet.id.in_(local_sheets), Timesheet.id.in_(sourced_sheets))
        .order_by(Timesheet.id)
    )
    sheets = list(result.scalars().all())

    outcome = RepairResult(sync_type=sync_models.DUPLICATE_CLEANUP, timesheets_checked=len(sheets))
    for sheet in sheets:
        entries = await list_entries(db, sheet.id)
        locals_ = sorted((e for e in entries if not e.ts_source), key=lambda e: e.id)
        sourced = [e for e in entries if e.ts_source]
        consumed: set[int] = set()
        touched = False

        for local in locals_:
            duplicates = [
                e for e in sourced
                if e.id not in consumed
                and e.work_date == local.work_date
                and abs(e.hours - local.hours) <= tolerance_hours + TOLERANCE_EPSILON
            ]
            if not duplicates:
                continue
            consumed.update(e.id for e in duplicates)
            newest = max(duplicates, key=_synced_key)
            link_id, synced_at = newest.external_entry_id, newest.external_synced_at

            # Free the external ids before the local entry takes one over
            for duplicate in duplicates:
                await db.delete(duplicate)
            await db.flush()

            local.external_entry_id = link_id
            local.external_synced_at = synced_at or utcnow()
            local.verified = True
            await db.flush()
            outcome.entries_deleted += len(duplicates)
            outcome.entries_verified += 1
            touched = True

        if touched:
            await recompute_verified(db, sheet)
            outcome.timesheets_repaired += 1
    await db.flush()

    await log_sync(db, sync_type=sync_models.DUPLICATE_CLEANUP, status=sync_models.SUCCESS,
        records_processed=len(sheets), records_updated=outcome.entries_verified,
        details=outcome.model_dump(), started_at=started_at,
    )
    await audit(actor_id=actor_id, action="sync.cleanup_duplicates", resource_type="timesheet_entry",
        detail=outcome.model_dump(),
    )
    logger.info("Duplicate cleanup: %d entries deleted, %d verified", outcome.entries_deleted, outcome.entries_verified)
    return outcome


# ── Duplicate timesheets ──────────────────────────────────────────────────────

async def merge_duplicate_timesheets(
    db: AsyncSession,
    actor_id: int | None = None,
) -> RepairResult:
    """
    Collapse several timesheets for one employee and week into the one holding the
    most entries (ties go to the lowest id). The survivor takes the most advanced
    status in the group, and every entry it ends up holding mirrors that status.
    """
    started_at = utcnow()
    result = await db.execute(select(Timesheet).order_by(Timesheet.employee_id, Timesheet.id))
    sheets = list(result.scalars().all())
    counts_result = await db.execute(
        select(TimesheetEntry.timesheet_id, func.count(TimesheetEntry.id))
        .group_by(TimesheetEntry.timesheet_id)
    )
    entry_counts = dict(counts_result.all())

    groups: dict[tuple[int, object], list[Timesheet]] = defaultdict(list)
    for sheet in sheets:
        groups[(sheet.employee_id, timesheet_week_key(sheet.week_starting))].append(sheet)

    outcome = RepairResult(sync_type=sync_models.TIMESHEET_MERGE, timesheets_checked=len(sheets))
    for (employee_id, monday), group in groups.items():
        if len(group) < 2:
            continue
        survivor = max(group, key=lambda s: (entry_counts.get(s.id, 0), -s.id))
        merged_status = highest_status(s.status for s in group)
        for duplicate in group:
            if duplicate is survivor:
                continue
            for entry in await list_entries(db, duplicate.id):
                entry.timesheet_id = survivor.id
                outcome.entries_moved += 1
            await db.flush()
            await db.delete(duplicate)
            outcome.timesheets_deleted += 1
        await db.flush()

        if survivor.week_starting != monday:
            survivor.week_starting = monday
            survivor.week_ending = week_end(monday)
        if is_advance(survivor.status, merged_status):
            survivor.status = merged_status
        await cascade_status(db, survivor)
        await recompute_verified(db, survivor)
        outcome.timesheets_repaired += 1
        logger.info(
            "Merged %d timesheets for employee %s week %s into %s",
            len(group), employee_id, monday, survivor.id,
        )
    await db.flush()

    await log_sync(db, sync_type=sync_models.TIMESHEET_MERGE, status=sync_models.SUCCESS,
        records_processed=len(sheets), records_updated=outcome.entries_moved,
        details=outcome.model_dump(), started_at=started_at,
    )
    await audit(actor_id=actor_id, action="sync.merge_timesheets", resource_type="timesheet",
        detail=outcome.model_dump(),
    )
    return outcome
