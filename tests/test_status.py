from timeledger.core.timesheets.status import (
    Status, edit_block_reason, highest_status, is_advance, is_finalized,
    map_external_status, parse_status, raise_status,
)
import pytest


def test_order_is_total_for_merges():
    assert highest_status(["OPEN", "SUBMITTED", "INCOMPLETE"]) == Status.SUBMITTED
    assert highest_status([Status.APPROVED, Status.LOCKED, Status.OPEN]) == Status.LOCKED
    assert highest_status([]) == Status.OPEN


def test_never_downgrade():
    assert not is_advance(Status.APPROVED, Status.SUBMITTED)
    assert raise_status(Status.APPROVED, Status.OPEN) == Status.APPROVED
    assert raise_status(Status.OPEN, Status.INCOMPLETE) == Status.INCOMPLETE
    # AWAITING_APPROVAL ranks with SUBMITTED
    assert not is_advance(Status.SUBMITTED, Status.AWAITING_APPROVAL)


def test_finalized_from_approved():
    assert is_finalized(Status.APPROVED)
    assert is_finalized(Status.PROCESSED)
    assert not is_finalized(Status.AWAITING_APPROVAL)


def test_external_status_table():
    assert map_external_status("Draft") == Status.OPEN
    assert map_external_status("pending") == Status.SUBMITTED
    assert map_external_status("awaiting_approval") == Status.SUBMITTED
    assert map_external_status("finalized") == Status.PROCESSED
    assert map_external_status("something-new") == Status.OPEN
    assert map_external_status(None) == Status.OPEN


def test_parse_status_rejects_unknown():
    assert parse_status("locked") == Status.LOCKED
    with pytest.raises(ValueError):
        parse_status("archived")


def test_gate_reports_cause_separately():
    assert edit_block_reason(Status.OPEN, None) is None
    assert edit_block_reason(Status.UNLOCKED, "OPEN") is None
    assert edit_block_reason(Status.SUBMITTED, None)[0] == "entry_locked"
    assert edit_block_reason(Status.OPEN, Status.APPROVED)[0] == "external_read_only"
    # Local lock wins when both apply
    assert edit_block_reason(Status.LOCKED, Status.PROCESSED)[0] == "entry_locked"
