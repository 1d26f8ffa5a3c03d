from datetime import datetime, date
from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, Date, Float, String, Text,
    ForeignKey, Integer, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from timeledger.db.base import Base, TimestampMixin


class Timesheet(Base, TimestampMixin):
    """
    One timesheet per employee per Monday-anchored week.
    week_ending == week_starting + 6 days.
    status: OPEN → INCOMPLETE → SUBMITTED → AWAITING_APPROVAL → APPROVED → LOCKED → PROCESSED
    UNLOCKED only from LOCKED via privileged action.
    external_* fields are bookkeeping owned by the reconciliation engine.
    """
    __tablename__ = "timesheets"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    week_starting: Mapped[date] = mapped_column(Date, nullable=False)
    week_ending: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="OPEN")
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_period_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    __table_args__ = (
        UniqueConstraint("employee_id", "week_starting", name="uq_timesheet_employee_week"),
        Index("ix_timesheets_status", "status"),
    )


class TimesheetEntry(Base, TimestampMixin):
    """
    Day-level unit of work.
    Times are local HH:MM on the same day; when both are set hours == (end - start) / 60.
    ts_source=True marks entries created by the reconciliation engine.
    external_entry_id is unique when present.
    """
    __tablename__ = "timesheet_entries"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timesheet_id: Mapped[int] = mapped_column(Integer, ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    entry_type: Mapped[str] = mapped_column(String(50), nullable=False, default="GENERAL")
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False)
    company_id: Mapped[int] = mapped_column(Integer, ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="OPEN")
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ts_source: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    external_entry_id: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    external_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    private_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    starting_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    travel_from: Mapped[str | None] = mapped_column(String(500), nullable=True)
    travel_to: Mapped[str | None] = mapped_column(String(500), nullable=True)
    __table_args__ = (
        Index("ix_timesheet_entries_work_date", "work_date"),
        CheckConstraint("hours >= 0", name="ck_timesheet_entries_hours_nonneg"),
    )
