from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeledger.core.companies.models import Company, Role
from timeledger.db.base import Base, TimestampMixin

# Identifier types understood by the reconciliation engine
EXTERNAL_WORKER_ID = "external_worker_id"
EXTERNAL_WORK_EMAIL = "external_work_email"


class Employee(Base, TimestampMixin):
    """
    Created by administrative action only.
    Schedule defaults (HH:MM local) seed the times of externally sourced entries.
    """
    __tablename__ = "employees"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    morning_start: Mapped[str] = mapped_column(String(5), nullable=False, default="08:30")
    morning_end: Mapped[str] = mapped_column(String(5), nullable=False, default="12:30")
    afternoon_start: Mapped[str] = mapped_column(String(5), nullable=False, default="13:00")
    afternoon_end: Mapped[str] = mapped_column(String(5), nullable=False, default="17:00")
    max_daily_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    identifiers: Mapped[list["ExternalIdentifier"]] = relationship(back_populates="employee")
    roles: Mapped[list["EmployeeRole"]] = relationship(back_populates="employee")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class ExternalIdentifier(Base, TimestampMixin):
    """
    Typed key/value owned by an employee, optionally scoped to a company.
    The sync engine may add these; it never creates employees.
    """
    __tablename__ = "external_identifiers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    identifier_type: Mapped[str] = mapped_column(String(100), nullable=False)
    identifier_value: Mapped[str] = mapped_column(String(255), nullable=False)
    company_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    employee: Mapped["Employee"] = relationship(back_populates="identifiers")
    __table_args__ = (
        UniqueConstraint("employee_id", "identifier_type", "company_id", name="uq_identifier_employee_type_company"),
        Index("ix_external_identifiers_type_value", "identifier_type", "identifier_value"),
    )


class EmployeeRole(Base, TimestampMixin):
    __tablename__ = "employee_roles"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    company_id: Mapped[int] = mapped_column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    employee: Mapped["Employee"] = relationship(back_populates="roles")
    role: Mapped["Role"] = relationship()
    company: Mapped["Company"] = relationship()
    __table_args__ = (
        UniqueConstraint("employee_id", "role_id", "company_id", name="uq_employee_role_company"),
    )
