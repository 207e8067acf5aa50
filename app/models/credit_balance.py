from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class CreditBalance(Document):
    """Current balance per user; one row per user, created lazily at zero.

    grant_keys records every idempotency key whose credits were added, written in the
    same update as the increment. debit_keys keeps only the most recent decrements.
    """
    user_id: PydanticObjectId
    credits: int = Field(default=0, ge=0)
    grant_keys: list[str] = Field(default_factory=list)
    debit_keys: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_balances"
        indexes = [IndexModel([("user_id", ASCENDING)], unique=True)]
