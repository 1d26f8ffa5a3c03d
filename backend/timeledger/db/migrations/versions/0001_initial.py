"""Initial schema – employees, companies, timesheets, entries, sync log

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""
from typing import Sequence, Union
import sqlalchemy as sa
from alembic import op

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    # ── companies / roles / approvers ─────────────────────────────────────────
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        *_timestamps(),
    )
    op.create_table(
        "approvers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "email", name="uq_approver_company_email"),
    )
    op.create_index("ix_approvers_company_id", "approvers", ["company_id"])

    # ── employees ─────────────────────────────────────────────────────────────
    op.create_table(
        "employees",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("morning_start", sa.String(5), nullable=False, server_default="08:30"),
        sa.Column("morning_end", sa.String(5), nullable=False, server_default="12:30"),
        sa.Column("afternoon_start", sa.String(5), nullable=False, server_default="13:00"),
        sa.Column("afternoon_end", sa.String(5), nullable=False, server_default="17:00"),
        sa.Column("max_daily_hours", sa.Float, nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "external_identifiers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("employee_id", sa.Integer, sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("identifier_type", sa.String(100), nullable=False),
        sa.Column("identifier_value", sa.String(255), nullable=False),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("employee_id", "identifier_type", "company_id", name="uq_identifier_employee_type_company"),
    )
    op.create_index("ix_external_identifiers_employee_id", "external_identifiers", ["employee_id"])
    op.create_index("ix_external_identifiers_type_value", "external_identifiers", ["identifier_type", "identifier_value"])
    op.create_table(
        "employee_roles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("employee_id", sa.Integer, sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role_id", sa.Integer, sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
        sa.UniqueConstraint("employee_id", "role_id", "company_id", name="uq_employee_role_company"),
    )
    op.create_index("ix_employee_roles_employee_id", "employee_roles", ["employee_id"])

    # ── timesheets ────────────────────────────────────────────────────────────
    op.create_table(
        "timesheets",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("employee_id", sa.Integer, sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("week_starting", sa.Date, nullable=False),
        sa.Column("week_ending", sa.Date, nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="OPEN"),
        sa.Column("verified", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("auto_created", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Integer, nullable=True),
        sa.Column("external_period_id", sa.String(100), nullable=True),
        sa.Column("external_status", sa.String(50), nullable=True),
        sa.Column("external_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("employee_id", "week_starting", name="uq_timesheet_employee_week"),
    )
    op.create_index("ix_timesheets_employee_id", "timesheets", ["employee_id"])
    op.create_index("ix_timesheets_status", "timesheets", ["status"])

    # ── timesheet_entries ─────────────────────────────────────────────────────
    op.create_table(
        "timesheet_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("timesheet_id", sa.Integer, sa.ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("entry_type", sa.String(50), nullable=False, server_default="GENERAL"),
        sa.Column("work_date", sa.Date, nullable=False),
        sa.Column("start_time", sa.String(5), nullable=True),
        sa.Column("end_time", sa.String(5), nullable=True),
        sa.Column("hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("role_id", sa.Integer, sa.ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("company_id", sa.Integer, sa.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="OPEN"),
        sa.Column("verified", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("ts_source", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("external_entry_id", sa.String(100), nullable=True, unique=True),
        sa.Column("external_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("private_notes", sa.Text, nullable=True),
        sa.Column("starting_location", sa.String(255), nullable=True),
        sa.Column("travel_from", sa.String(500), nullable=True),
        sa.Column("travel_to", sa.String(500), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("hours >= 0", name="ck_timesheet_entries_hours_nonneg"),
    )
    op.create_index("ix_timesheet_entries_timesheet_id", "timesheet_entries", ["timesheet_id"])
    op.create_index("ix_timesheet_entries_company_id", "timesheet_entries", ["company_id"])
    op.create_index("ix_timesheet_entries_work_date", "timesheet_entries", ["work_date"])

    # ── sync_logs ─────────────────────────────────────────────────────────────
    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("sync_type", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("employee_id", sa.Integer, sa.ForeignKey("employees.id", ondelete="SET NULL"), nullable=True),
        sa.Column("timesheet_id", sa.Integer, sa.ForeignKey("timesheets.id", ondelete="SET NULL"), nullable=True),
        sa.Column("records_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("records_created", sa.Integer, nullable=False, server_default="0"),
        sa.Column("records_updated", sa.Integer, nullable=False, server_default="0"),
        sa.Column("records_skipped", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("details_json", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_sync_logs_type_created", "sync_logs", ["sync_type", "created_at"])


def downgrade() -> None:
    op.drop_table("sync_logs")
    op.drop_table("timesheet_entries")
    op.drop_table("timesheets")
    op.drop_table("employee_roles")
    op.drop_table("external_identifiers")
    op.drop_table("employees")
    op.drop_table("approvers")
    op.drop_table("roles")
    op.drop_table("companies")
