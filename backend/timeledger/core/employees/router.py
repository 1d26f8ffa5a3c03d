from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from timeledger.core.audit.service import audit
from timeledger.core.employees import service
from timeledger.core.employees.schemas import EmployeeRead, IdentifierRead, IdentifierSet
from timeledger.dependencies import get_db, get_current_user, require_admin, CurrentUser

router = APIRouter(prefix="/employees", tags=["employees"])


@router.get("/{employee_id}", response_model=EmployeeRead)
async def get_employee(
    employee_id: int,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    if not current.can_approve and current.employee_id != employee_id:
        raise HTTPException(403, "Not your record")
    employee = await service.get_employee(db, employee_id)
    if not employee:
        raise HTTPException(404, "Employee not found")
    return employee


@router.put("/{employee_id}/identifiers", response_model=IdentifierRead)
async def set_identifier(
    employee_id: int,
    data: IdentifierSet,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_admin),
):
    if not await service.get_employee(db, employee_id):
        raise HTTPException(404, "Employee not found")
    identifier = await service.set_identifier(
        db, employee_id, data.identifier_type, data.identifier_value, data.company_id,
    )
    await audit(actor_id=current.user_id, action="employee.identifier_set", resource_type="employee",
        resource_id=employee_id, detail=data.model_dump(),
    )
    return identifier
