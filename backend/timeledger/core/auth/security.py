from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from timeledger.settings import get_settings

settings = get_settings()

ROLE_ADMIN = "admin"
ROLE_APPROVER = "approver"
ROLE_EMPLOYEE = "employee"


def create_access_token(user_id: int, role: str, employee_id: int | None = None) -> str:
    """Issued by the identity service; kept here for tooling and tests."""
    expires = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user_id),
        "role": role,
        "employee_id": employee_id,
        "type": "access",
        "exp": expires,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    if payload.get("type") != "access":
        raise JWTError("Wrong token type")
    if "sub" not in payload:
        raise JWTError("Missing subject")
    return payload
