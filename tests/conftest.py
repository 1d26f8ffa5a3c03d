import asyncio
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SYNC_ENABLED"] = "false"
os.environ["PAYROLL_SYNC_ENABLED"] = "false"

import pytest
from datetime import date
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from timeledger.core.companies.models import Approver, Company, Role
from timeledger.core.employees.models import (
    Employee, EmployeeRole, ExternalIdentifier, EXTERNAL_WORKER_ID,
)
from timeledger.core.notifications.dispatcher import dispatcher
from timeledger.core.notifications.service import collaborators
from timeledger.core.sync.client import ExternalSourceError
from timeledger.core.sync.models import SyncLog  # noqa
from timeledger.core.sync.schemas import ExternalPeriod, ExternalRow
from timeledger.core.timesheets.models import Timesheet, TimesheetEntry  # noqa
from timeledger.db.base import Base

MONDAY = date(2026, 2, 2)


# ── Database ──────────────────────────────────────────────────────────────────

def run_scenario(scenario):
    """Run scenario(session_factory) against a fresh in-memory database."""
    async def main():
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
        try:
            return await scenario(factory)
        finally:
            await dispatcher.drain()
            await engine.dispose()
    return asyncio.run(main())


async def seed_employee(
    db,
    email: str = "ann.lee@example.com",
    company_name: str = "Northside Primary",
    worker_id: str | None = "W1",
    max_daily_hours: float | None = None,
    with_role: bool = True,
):
    company = (await db.execute(select(Company).where(Company.name == company_name))).scalar_one_or_none()
    if not company:
        company = Company(name=company_name)
        db.add(company)
    role = (await db.execute(select(Role).where(Role.name == "Relief Educator"))).scalar_one_or_none()
    if not role:
        role = Role(name="Relief Educator")
        db.add(role)
    first, last = email.split("@")[0].split(".")
    employee = Employee(
        first_name=first.title(), last_name=last.title(), email=email,
        max_daily_hours=max_daily_hours,
    )
    db.add(employee)
    await db.flush()
    if with_role:
        db.add(EmployeeRole(employee_id=employee.id, role_id=role.id, company_id=company.id))
    if worker_id:
        db.add(ExternalIdentifier(
            employee_id=employee.id, identifier_type=EXTERNAL_WORKER_ID, identifier_value=worker_id,
        ))
    await db.flush()
    return employee, role, company


async def add_approver(db, company: Company, email: str) -> Approver:
    approver = Approver(company_id=company.id, name=email.split("@")[0], email=email)
    db.add(approver)
    await db.flush()
    return approver


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeAttendanceSource:
    def __init__(self, period: ExternalPeriod | None = None, rows: dict[str, list[dict]] | None = None):
        self.period = period
        self.rows = rows or {}
        self.failing_workers: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, str]] = []

    async def get_current_period(self) -> ExternalPeriod | None:
        if self.gate is not None:
            await self.gate.wait()
        return self.period

    async def get_rows(self, worker_id: str, period_id: str) -> list[ExternalRow]:
        self.calls.append((worker_id, period_id))
        if worker_id in self.failing_workers:
            raise ExternalSourceError(f"worker {worker_id} unavailable")
        return [ExternalRow.model_validate({"worker_id": worker_id, **r}) for r in self.rows.get(worker_id, [])]


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str, int]] = []

    async def notify(self, kind, recipient, snapshot) -> None:
        if self.fail:
            raise RuntimeError("mail relay down")
        self.sent.append((kind, recipient, snapshot.id))


class RecordingPayroll:
    def __init__(self):
        self.pushed: list = []

    async def push(self, snapshot) -> None:
        self.pushed.append(snapshot)


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def period():
    return ExternalPeriod(id="P1", start_date=MONDAY, end_date=date(2026, 2, 15))


@pytest.fixture
def source(period):
    return FakeAttendanceSource(period=period)


@pytest.fixture
def notifier(monkeypatch):
    recorder = RecordingNotifier()
    monkeypatch.setattr(collaborators, "notifier", recorder)
    return recorder


@pytest.fixture
def payroll(monkeypatch):
    recorder = RecordingPayroll()
    monkeypatch.setattr(collaborators, "payroll", recorder)
    return recorder
