from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.core.exceptions import NotFoundError
from app.deps import get_current_user, parse_object_id
from app.models.contact import Contact
from app.models.user import User
from app.services import contacts as contacts_service

router = APIRouter()


class ContactCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=200)
    last_name: str = Field(min_length=1, max_length=200)
    phone: str = Field(default="", max_length=50)
    email: str | None = Field(default=None, max_length=320)
    address: str | None = Field(default=None, max_length=500)
    postal_code: str | None = Field(default=None, max_length=20)
    note: str | None = Field(default=None, max_length=5000)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class ContactUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=200)
    last_name: str | None = Field(default=None, min_length=1, max_length=200)
    phone: str | None = Field(default=None, max_length=50)
    email: str | None = Field(default=None, max_length=320)
    address: str | None = Field(default=None, max_length=500)
    postal_code: str | None = Field(default=None, max_length=20)
    note: str | None = Field(default=None, max_length=5000)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


def _contact_out(c: Contact) -> dict:
    return {
        "id": str(c.id),
        "first_name": c.first_name,
        "last_name": c.last_name,
        "phone": c.phone,
        "email": c.email,
        "address": c.address,
        "postal_code": c.postal_code,
        "note": c.note,
        "latitude": c.latitude,
        "longitude": c.longitude,
        "created_by": str(c.created_by),
        "created_at": c.created_at.isoformat(),
        "updated_at": c.updated_at.isoformat(),
    }


@router.get("")
async def contacts_list(user: User = Depends(get_current_user)):
    """List contacts for current user, newest first."""
    items = await contacts_service.list_contacts(user.id)
    return {"contacts": [_contact_out(c) for c in items]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def contact_create(body: ContactCreate, user: User = Depends(get_current_user)):
    """Create a contact; costs one credit (402 when none are left)."""
    c = await contacts_service.create_paid_contact(user.id, body.model_dump())
    return _contact_out(c)


@router.get("/{contact_id}")
async def contact_get(contact_id: str, user: User = Depends(get_current_user)):
    oid = parse_object_id(contact_id)
    c = await contacts_service.get_contact(user.id, oid) if oid else None
    if not c:
        raise NotFoundError("Contact not found")
    return _contact_out(c)


@router.put("/{contact_id}")
async def contact_update(
    contact_id: str,
    body: ContactUpdate,
    user: User = Depends(get_current_user),
):
    oid = parse_object_id(contact_id)
    c = await contacts_service.update_contact(user.id, oid, body.model_dump(exclude_unset=True)) if oid else None
    if not c:
        raise NotFoundError("Contact not found")
    return _contact_out(c)


@router.delete("/{contact_id}")
async def contact_delete(contact_id: str, user: User = Depends(get_current_user)):
    oid = parse_object_id(contact_id)
    ok = await contacts_service.delete_contact(user.id, oid) if oid else False
    if not ok:
        raise NotFoundError("Contact not found")
    return {"status": "deleted"}
