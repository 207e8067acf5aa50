from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel


class PaymentRecord(Document):
    """Append-only audit row for every credit grant (purchase or refund)."""
    user_id: PydanticObjectId
    amount: int = 0  # minor currency units charged; 0 for refunds
    currency: str = "eur"
    credits: int = Field(gt=0)
    status: Literal["completed", "refunded"] = "completed"
    reason: Literal["purchase", "refund"] = "purchase"
    payment_intent_id: str | None = None
    idempotency_key: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payment_records"
        indexes = [
            IndexModel([("idempotency_key", ASCENDING)], unique=True),
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("payment_intent_id", ASCENDING)]),
        ]
