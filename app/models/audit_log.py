from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    user_id: str | None = None  # None for anomalies that cannot be attributed
    event_type: str  # payment_reconciled, payment_metadata_invalid, credit_refund_failed, contact_created, ...
    entity_type: str  # payment, contact, user
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("entity_type", 1), ("entity_id", 1)],
            [("event_type", 1)],
        ]
