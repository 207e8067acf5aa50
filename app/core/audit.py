"""Audit log for credit-affecting actions and anomalies that need a human to look at."""

from typing import Any

from pymongo.errors import PyMongoError

from app.core.logging import get_logger
from app.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append to audit_logs. A failed write is logged, never raised: the action itself already happened."""
    try:
        await AuditLog(
            user_id=user_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata or {},
        ).insert()
    except PyMongoError as e:
        log.error(
            "audit_write_failed",
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            error=repr(e),
        )
