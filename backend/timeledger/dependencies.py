from dataclasses import dataclass
from typing import Annotated, AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from timeledger.core.auth.security import ROLE_ADMIN, ROLE_APPROVER, decode_access_token
from timeledger.core.sync.engine import ReconciliationEngine
from timeledger.db.session import AsyncSessionLocal

bearer = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    user_id: int
    role: str
    employee_id: int | None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def can_approve(self) -> bool:
        return self.role in (ROLE_ADMIN, ROLE_APPROVER)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            yield session


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
) -> CurrentUser:
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
        user_id = int(payload["sub"])
    except (JWTError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    employee_id = payload.get("employee_id")
    return CurrentUser(
        user_id=user_id,
        role=payload.get("role", ""),
        employee_id=int(employee_id) if employee_id is not None else None,
    )


async def require_admin(
    current: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not current.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin required")
    return current


async def require_approver(
    current: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not current.can_approve:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Approver required")
    return current


def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.reconciliation
