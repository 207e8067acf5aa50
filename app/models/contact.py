from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel


class Contact(Document):
    created_by: PydanticObjectId
    first_name: str
    last_name: str
    phone: str = ""
    email: str | None = None
    address: str | None = None
    postal_code: str | None = None
    note: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "contacts"
        indexes = [IndexModel([("created_by", ASCENDING), ("created_at", DESCENDING)])]
