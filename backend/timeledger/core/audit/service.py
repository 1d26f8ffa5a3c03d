import json
import logging
from typing import Any

from timeledger.db.base import utcnow

audit_logger = logging.getLogger("timeledger.audit")


async def audit(
    *,
    actor_id: int | None,
    action: str,
    resource_type: str,
    resource_id: int | str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    """Hand an audit event to the audit sink. Persistence happens downstream of the log."""
    audit_logger.info(
        json.dumps(
            {
                "at": utcnow().isoformat(),
                "actor_id": actor_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": str(resource_id) if resource_id is not None else None,
                "detail": detail or {},
            },
            default=str,
        )
    )
