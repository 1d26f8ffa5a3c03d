from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from timeledger.db.base import Base, utcnow

# sync_type values
FULL_SYNC = "FULL_SYNC"
DUPLICATE_CLEANUP = "DUPLICATE_CLEANUP"
TIMESHEET_MERGE = "TIMESHEET_MERGE"
STATUS_REPAIR = "STATUS_REPAIR"

# status values
SUCCESS = "SUCCESS"
PARTIAL = "PARTIAL"
ERROR = "ERROR"


class SyncLog(Base):
    """Append-only: one row per reconciliation or repair run, written once at completion."""
    __tablename__ = "sync_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    employee_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    timesheet_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("timesheets.id", ondelete="SET NULL"), nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    details_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_sync_logs_type_created", "sync_type", "created_at"),
    )
