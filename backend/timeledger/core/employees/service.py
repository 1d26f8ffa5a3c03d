from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from timeledger.core.employees.models import (
    Employee, EmployeeRole, ExternalIdentifier, EXTERNAL_WORKER_ID,
)


async def get_employee(db: AsyncSession, employee_id: int) -> Employee | None:
    result = await db.execute(
        select(Employee)
        .where(Employee.id == employee_id)
        .options(
            selectinload(Employee.identifiers),
            selectinload(Employee.roles).selectinload(EmployeeRole.role),
            selectinload(Employee.roles).selectinload(EmployeeRole.company),
        )
    )
    return result.scalar_one_or_none()


async def list_tracked_workers(db: AsyncSession) -> list[tuple[Employee, str]]:
    """Employees holding an external worker id, paired with that id."""
    result = await db.execute(
        select(Employee, ExternalIdentifier.identifier_value)
        .join(ExternalIdentifier, ExternalIdentifier.employee_id == Employee.id)
        .where(ExternalIdentifier.identifier_type == EXTERNAL_WORKER_ID)
        .order_by(Employee.id)
    )
    seen: set[int] = set()
    workers = []
    for employee, worker_id in result.all():
        # One run per employee even if several companies map the same person
        if employee.id in seen:
            continue
        seen.add(employee.id)
        workers.append((employee, worker_id))
    return workers


async def get_identifier(
    db: AsyncSession,
    employee_id: int,
    identifier_type: str,
    company_id: int | None = None,
) -> ExternalIdentifier | None:
    q = select(ExternalIdentifier).where(
        ExternalIdentifier.employee_id == employee_id,
        ExternalIdentifier.identifier_type == identifier_type,
    )
    if company_id is None:
        q = q.where(ExternalIdentifier.company_id.is_(None))
    else:
        q = q.where(ExternalIdentifier.company_id == company_id)
    result = await db.execute(q)
    return result.scalar_one_or_none()


async def set_identifier(
    db: AsyncSession,
    employee_id: int,
    identifier_type: str,
    identifier_value: str,
    company_id: int | None = None,
) -> ExternalIdentifier:
    """Upsert. The sync engine may add identifiers but never employees."""
    identifier = await get_identifier(db, employee_id, identifier_type, company_id)
    if identifier:
        identifier.identifier_value = identifier_value
    else:
        identifier = ExternalIdentifier(
            employee_id=employee_id,
            identifier_type=identifier_type,
            identifier_value=identifier_value,
            company_id=company_id,
        )
        db.add(identifier)
    await db.flush()
    return identifier


async def active_roles(db: AsyncSession, employee_id: int) -> list[EmployeeRole]:
    result = await db.execute(
        select(EmployeeRole)
        .where(EmployeeRole.employee_id == employee_id, EmployeeRole.is_active.is_(True))
        .options(selectinload(EmployeeRole.role), selectinload(EmployeeRole.company))
        .order_by(EmployeeRole.id)
    )
    return list(result.scalars().all())


def pick_role(roles: list[EmployeeRole], location_label: str | None) -> EmployeeRole | None:
    """Prefer the role whose company name matches the row's location label."""
    if not roles:
        return None
    if location_label:
        wanted = location_label.strip().lower()
        for role in roles:
            if role.company and role.company.name.strip().lower() == wanted:
                return role
    return roles[0]
