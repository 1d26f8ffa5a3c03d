from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from timeledger.core.notifications.dispatcher import dispatcher
from timeledger.core.sync import repair
from timeledger.core.sync.client import ExternalSourceError
from timeledger.core.sync.engine import ReconciliationEngine, RunState
from timeledger.core.sync.schemas import (
    ExternalRow, ExternalWorker, RepairResult, SyncLogPage, SyncLogRead,
    SyncRunResult, SyncStatusRead,
)
from timeledger.core.sync.service import list_logs
from timeledger.dependencies import get_db, get_engine, require_admin, CurrentUser

router = APIRouter(prefix="/sync", tags=["sync"])


# ── Reconciliation ────────────────────────────────────────────────────────────

@router.post("/run", response_model=SyncRunResult)
async def run_sync(
    engine: ReconciliationEngine = Depends(get_engine),
    _: CurrentUser = Depends(require_admin),
):
    result = await engine.run()
    if result.skipped:
        raise HTTPException(409, "A sync run is already in progress")
    if result.status == RunState.ERROR:
        raise HTTPException(502, {"message": "Sync failed", "errors": result.errors})
    return result


@router.get("/status", response_model=SyncStatusRead)
async def sync_status(
    engine: ReconciliationEngine = Depends(get_engine),
    _: CurrentUser = Depends(require_admin),
):
    return SyncStatusRead(
        state=engine.state,
        last_result=engine.last_result,
        last_started_at=engine.last_started_at,
        last_completed_at=engine.last_completed_at,
        recent_failures=[
            {"label": f.label, "error": f.error, "failed_at": f.failed_at}
            for f in list(dispatcher.failures)[-20:]
        ],
    )


@router.get("/logs", response_model=SyncLogPage)
async def get_logs(
    sync_type: str | None = Query(None),
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    logs, total = await list_logs(db, sync_type=sync_type, status=status, limit=limit, offset=offset)
    return SyncLogPage(
        total=total, limit=limit, offset=offset,
        items=[SyncLogRead.model_validate(log) for log in logs],
    )


# ── Repairs ───────────────────────────────────────────────────────────────────

@router.post("/repair/duplicate-entries", response_model=RepairResult)
async def cleanup_duplicate_entries(
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_admin),
):
    return await repair.cleanup_duplicate_entries(db, actor_id=current.user_id)


@router.post("/repair/duplicate-timesheets", response_model=RepairResult)
async def merge_duplicate_timesheets(
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_admin),
):
    return await repair.merge_duplicate_timesheets(db, actor_id=current.user_id)


# ── External source passthrough ───────────────────────────────────────────────

@router.get("/external/workers", response_model=list[ExternalWorker])
async def external_workers(
    request: Request,
    _: CurrentUser = Depends(require_admin),
):
    try:
        return await request.app.state.attendance_client.list_workers()
    except ExternalSourceError as exc:
        raise HTTPException(502, str(exc))


@router.get("/external/timesheets", response_model=list[ExternalRow])
async def external_timesheets(
    request: Request,
    worker_id: str = Query(...),
    period_id: str | None = Query(None),
    _: CurrentUser = Depends(require_admin),
):
    client = request.app.state.attendance_client
    try:
        if period_id is None:
            period = await client.get_current_period()
            if period is None:
                raise HTTPException(502, "External source returned no current period")
            period_id = period.id
        return await client.get_rows(worker_id, period_id)
    except ExternalSourceError as exc:
        raise HTTPException(502, str(exc))


@router.post("/external/refresh")
async def external_refresh(
    request: Request,
    _: CurrentUser = Depends(require_admin),
):
    try:
        return await request.app.state.attendance_client.trigger_refresh()
    except ExternalSourceError as exc:
        raise HTTPException(502, str(exc))
