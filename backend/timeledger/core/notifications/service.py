import logging
from typing import Protocol

import httpx

from timeledger.core.timesheets.schemas import TimesheetSnapshot
from timeledger.settings import get_settings

logger = logging.getLogger(__name__)

TIMESHEET_SUBMITTED = "timesheet_submitted"
TIMESHEET_APPROVED = "timesheet_approved"


class Notifier(Protocol):
    async def notify(self, kind: str, recipient: str, snapshot: TimesheetSnapshot) -> None: ...


class PayrollSync(Protocol):
    async def push(self, snapshot: TimesheetSnapshot) -> None: ...


class LoggingNotifier:
    """Default notifier; mail/SMS delivery lives outside this service."""

    async def notify(self, kind: str, recipient: str, snapshot: TimesheetSnapshot) -> None:
        logger.info(
            "notify kind=%s recipient=%s timesheet=%s week=%s",
            kind, recipient, snapshot.id, snapshot.week_starting,
        )


class HttpPayrollSync:
    def __init__(self, url: str, timeout: float = 30.0):
        self.url = url
        self.timeout = timeout

    async def push(self, snapshot: TimesheetSnapshot) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=snapshot.model_dump(mode="json"))
            response.raise_for_status()
        logger.info("Payroll sync accepted timesheet %s", snapshot.id)


class Collaborators:
    """Swappable handles on the outbound collaborators."""

    def __init__(self):
        settings = get_settings()
        self.notifier: Notifier = LoggingNotifier()
        self.payroll: PayrollSync | None = (
            HttpPayrollSync(settings.PAYROLL_SYNC_URL)
            if settings.PAYROLL_SYNC_ENABLED and settings.PAYROLL_SYNC_URL
            else None
        )


collaborators = Collaborators()
