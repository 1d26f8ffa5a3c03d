import json
from datetime import datetime
from typing import Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from timeledger.core.sync.models import SyncLog
from timeledger.db.base import utcnow


async def log_sync(
    db: AsyncSession,
    *,
    sync_type: str,
    status: str,
    employee_id: int | None = None,
    timesheet_id: int | None = None,
    records_processed: int = 0,
    records_created: int = 0,
    records_updated: int = 0,
    records_skipped: int = 0,
    error_message: str | None = None,
    details: dict[str, Any] | None = None,
    started_at: datetime | None = None,
) -> SyncLog:
    log = SyncLog(
        sync_type=sync_type,
        status=status,
        employee_id=employee_id,
        timesheet_id=timesheet_id,
        records_processed=records_processed,
        records_created=records_created,
        records_updated=records_updated,
        records_skipped=records_skipped,
        error_message=error_message,
        details_json=json.dumps(details, default=str) if details is not None else None,
        started_at=started_at,
        completed_at=utcnow(),
    )
    db.add(log)
    await db.flush()
    return log


async def list_logs(
    db: AsyncSession,
    sync_type: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[SyncLog], int]:
    filters = []
    if sync_type:
        filters.append(SyncLog.sync_type == sync_type)
    if status:
        filters.append(SyncLog.status == status)

    total = await db.scalar(select(func.count(SyncLog.id)).where(*filters))
    result = await db.execute(
        select(SyncLog).where(*filters)
        .order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
        .limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total or 0
