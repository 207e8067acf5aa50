"""Contacts CRUD scoped to the owner, and the credit-paid create flow."""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.audit import log_event
from app.core.exceptions import AppError, BadRequestError, PaymentRequiredError
from app.core.logging import get_logger
from app.core.security import generate_idempotency_key
from app.db.init import run_store
from app.models.contact import Contact
from app.services import credits as credits_service

log = get_logger(__name__)

EDITABLE_FIELDS = (
    "first_name",
    "last_name",
    "phone",
    "email",
    "address",
    "postal_code",
    "note",
    "latitude",
    "longitude",
)
REQUIRED_FIELDS = ("first_name", "last_name")


def _clean(fields: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    for k, v in out.items():
        if isinstance(v, str):
            out[k] = v.strip()
    for k in REQUIRED_FIELDS:
        if k in out and (not isinstance(out[k], str) or not out[k]):
            raise BadRequestError("First name and last name are required")
    # phone is stored as a string; null clears it
    if "phone" in out and out["phone"] is None:
        out["phone"] = ""
    return out


def _new_contact_data(fields: dict[str, Any]) -> dict[str, Any]:
    data = _clean(fields)
    for k in REQUIRED_FIELDS:
        if not data.get(k):
            raise BadRequestError("First name and last name are required")
    return data


async def create_contact(user_id: PydanticObjectId, fields: dict[str, Any]) -> Contact:
    """Insert a contact owned by user_id. The caller must already have spent a credit."""
    data = _new_contact_data(fields)
    # Id assigned up front so a retried insert that already landed shows up as a duplicate
    contact = Contact(id=PydanticObjectId(), created_by=user_id, **data)
    try:
        await run_store(contact.insert, "contacts.insert")
    except DuplicateKeyError:
        log.info("contact_insert_replayed", contact_id=str(contact.id))
    return contact


async def _refund_credit(user_id: PydanticObjectId) -> None:
    """Best-effort: give back the credit spent on a contact that was not stored."""
    key = generate_idempotency_key("refund")
    try:
        await credits_service.increment(user_id, 1, reason="refund", idempotency_key=key)
        log.info("credit_refunded", user_id=str(user_id), idempotency_key=key)
    except (AppError, PyMongoError) as e:
        error = e.message if isinstance(e, AppError) else repr(e)
        log.error("credit_refund_failed", user_id=str(user_id), idempotency_key=key, error=error)
        await log_event(str(user_id), "credit_refund_failed", "credit", key, {"error": error})


async def create_paid_contact(user_id: PydanticObjectId, fields: dict[str, Any]) -> Contact:
    """
    Spend one credit, then insert the contact.
    If the insert fails the credit is refunded; the refund is not transactional with the
    debit, so a failed insert followed by a failed refund leaves the user one credit short
    (logged as credit_refund_failed for manual reconciliation).
    """
    _new_contact_data(fields)
    if not await credits_service.try_decrement(user_id):
        raise PaymentRequiredError("You don't have enough credits to create a new contact")
    try:
        contact = await create_contact(user_id, fields)
    except Exception:
        log.warning("contact_insert_failed", user_id=str(user_id))
        await _refund_credit(user_id)
        raise
    log.info("contact_created", user_id=str(user_id), contact_id=str(contact.id))
    await log_event(str(user_id), "contact_created", "contact", str(contact.id))
    return contact


async def get_contact(user_id: PydanticObjectId, contact_id: PydanticObjectId) -> Contact | None:
    return await run_store(
        lambda: Contact.find_one(
            Contact.id == contact_id,
            Contact.created_by == user_id,
        ),
        "contacts.get",
    )


async def list_contacts(user_id: PydanticObjectId) -> list[Contact]:
    """All contacts owned by user, newest first."""
    return await run_store(
        lambda: Contact.find(Contact.created_by == user_id).sort(-Contact.created_at, -Contact.id).to_list(),
        "contacts.list",
    )


async def update_contact(
    user_id: PydanticObjectId,
    contact_id: PydanticObjectId,
    fields: dict[str, Any],
) -> Contact | None:
    """Apply the given fields; None if contact_id is not owned by user_id."""
    c = await get_contact(user_id, contact_id)
    if not c:
        return None
    for k, v in _clean(fields).items():
        setattr(c, k, v)
    c.updated_at = datetime.utcnow()
    await run_store(c.save, "contacts.save")
    return c


async def delete_contact(user_id: PydanticObjectId, contact_id: PydanticObjectId) -> bool:
    c = await get_contact(user_id, contact_id)
    if not c:
        return False
    await run_store(c.delete, "contacts.delete")
    log.info("contact_deleted", user_id=str(user_id), contact_id=str(contact_id))
    await log_event(str(user_id), "contact_deleted", "contact", str(contact_id))
    return True
