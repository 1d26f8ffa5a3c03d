"""
Status vocabulary shared by Timesheet and TimesheetEntry.

Every "highest status wins" merge and every "never downgrade" check goes through
status_rank / is_advance / highest_status below.
"""
from enum import StrEnum


class Status(StrEnum):
    OPEN = "OPEN"
    INCOMPLETE = "INCOMPLETE"
    SUBMITTED = "SUBMITTED"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    APPROVED = "APPROVED"
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"
    PROCESSED = "PROCESSED"


# AWAITING_APPROVAL ranks with SUBMITTED, UNLOCKED with OPEN.
STATUS_RANK: dict[str, int] = {
    Status.OPEN: 0,
    Status.UNLOCKED: 0,
    Status.INCOMPLETE: 1,
    Status.SUBMITTED: 2,
    Status.AWAITING_APPROVAL: 2,
    Status.APPROVED: 3,
    Status.LOCKED: 4,
    Status.PROCESSED: 5,
}

EDITABLE_STATUSES = {Status.OPEN, Status.UNLOCKED}
SUBMITTABLE_STATUSES = {Status.OPEN, Status.INCOMPLETE, Status.UNLOCKED}
APPROVABLE_STATUSES = {Status.SUBMITTED, Status.AWAITING_APPROVAL}

# Once the external system reports one of these for a week it owns the week
EXTERNAL_READ_ONLY_STATUSES = {Status.SUBMITTED, Status.APPROVED, Status.LOCKED, Status.PROCESSED}

EXTERNAL_STATUS_MAP: dict[str, Status] = {
    "open": Status.OPEN,
    "draft": Status.OPEN,
    "incomplete": Status.INCOMPLETE,
    "submitted": Status.SUBMITTED,
    "pending": Status.SUBMITTED,
    "awaiting_approval": Status.SUBMITTED,
    "approved": Status.APPROVED,
    "locked": Status.LOCKED,
    "processed": Status.PROCESSED,
    "finalized": Status.PROCESSED,
}


def parse_status(value: str) -> Status:
    """Strict lookup used by admin overrides; raises ValueError on unknown values."""
    try:
        return Status(value.upper())
    except ValueError:
        raise ValueError(f"Unknown status '{value}'") from None


def map_external_status(value: str | None) -> Status:
    if not value:
        return Status.OPEN
    return EXTERNAL_STATUS_MAP.get(value.strip().lower(), Status.OPEN)


def status_rank(status: str | None) -> int:
    return STATUS_RANK.get(status or "", 0)


def is_advance(current: str | None, candidate: str | None) -> bool:
    """True when moving from current to candidate goes strictly forward."""
    return status_rank(candidate) > status_rank(current)


def raise_status(current: str, candidate: str) -> str:
    return candidate if is_advance(current, candidate) else current


def highest_status(statuses) -> Status:
    highest = Status.OPEN
    for s in statuses:
        if is_advance(highest, s):
            highest = Status(s)
    return highest


def is_finalized(status: str | None) -> bool:
    """At or beyond APPROVED; reconciliation must not touch such a week."""
    return status_rank(status) >= STATUS_RANK[Status.APPROVED]


# ── Edit/delete gate ──────────────────────────────────────────────────────────
# Two independent conditions, reported separately.

def entry_locked_locally(entry_status: str) -> bool:
    return entry_status not in EDITABLE_STATUSES


def timesheet_locked_externally(external_status: str | None) -> bool:
    return external_status in EXTERNAL_READ_ONLY_STATUSES


def edit_block_reason(entry_status: str, timesheet_external_status: str | None) -> tuple[str, str] | None:
    """Returns (reason_code, message) when a mutation must be refused, else None."""
    if entry_locked_locally(entry_status):
        return "entry_locked", f"Entry is locked (status '{entry_status}')"
    if timesheet_locked_externally(timesheet_external_status):
        return (
            "external_read_only",
            f"Timesheet is read-only: the external system reports status '{timesheet_external_status}'",
        )
    return None
