from pydantic import BaseModel, Field


class IdentifierRead(BaseModel):
    model_config = {"from_attributes": True}
    id: int
    identifier_type: str
    identifier_value: str
    company_id: int | None


class IdentifierSet(BaseModel):
    identifier_type: str = Field(..., min_length=1, max_length=100)
    identifier_value: str = Field(..., min_length=1, max_length=255)
    company_id: int | None = None


class EmployeeRoleRead(BaseModel):
    model_config = {"from_attributes": True}
    id: int
    role_id: int
    company_id: int
    is_active: bool


class EmployeeRead(BaseModel):
    model_config = {"from_attributes": True}
    id: int
    first_name: str
    last_name: str
    email: str
    morning_start: str
    morning_end: str
    afternoon_start: str
    afternoon_end: str
    max_daily_hours: float | None
    identifiers: list[IdentifierRead] = []
    roles: list[EmployeeRoleRead] = []
