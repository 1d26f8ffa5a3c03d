import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from timeledger.core.employees.router import router as employees_router
from timeledger.core.notifications.dispatcher import dispatcher
from timeledger.core.sync.client import ExternalAttendanceClient
from timeledger.core.sync.engine import ReconciliationEngine, run_periodically
from timeledger.core.sync.router import router as sync_router
from timeledger.core.timesheets.router import router as timesheets_router
from timeledger.db.session import AsyncSessionLocal
from timeledger.settings import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    client = ExternalAttendanceClient.from_settings()
    app.state.attendance_client = client
    app.state.reconciliation = ReconciliationEngine(AsyncSessionLocal, client)

    scheduled = None
    if settings.SYNC_ENABLED:
        logger.info("Scheduled sync every %d minutes", settings.SYNC_INTERVAL_MINUTES)
        scheduled = asyncio.create_task(
            run_periodically(app.state.reconciliation, settings.SYNC_INTERVAL_MINUTES)
        )
    try:
        yield
    finally:
        if scheduled:
            scheduled.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scheduled
        await dispatcher.drain()
        await client.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Timeledger API",
        version="0.1.0",
        docs_url="/docs" if settings.APP_DEBUG else None,
        redoc_url="/redoc" if settings.APP_DEBUG else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.APP_DEBUG else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(timesheets_router)
    app.include_router(sync_router)
    app.include_router(employees_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
