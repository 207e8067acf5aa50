"""Credits ledger: per-user balance with conditional single-document updates.

Every balance change is one update_one whose filter carries its own precondition,
so concurrent requests never read-modify-write:

- try_decrement matches only while credits >= 1, so of N racing decrements on a
  balance of 1 exactly one matches.
- increment matches only while its idempotency key is absent from grant_keys, and
  pushes the key in the same update, so a grant is applied at most once however
  many times it is replayed.

The PaymentRecord audit row follows the increment under a unique idempotency_key.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from beanie import PydanticObjectId
from beanie.operators import Inc, Push, Set
from pymongo.errors import DuplicateKeyError

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, LedgerUnavailableError
from app.core.logging import get_logger
from app.core.security import generate_idempotency_key
from app.db.init import run_store
from app.models.credit_balance import CreditBalance
from app.models.payment_record import PaymentRecord

log = get_logger(__name__)

T = TypeVar("T")

REASONS = ("purchase", "refund")
DEBIT_KEYS_KEPT = 100


async def _store(fn: Callable[[], Awaitable[T]], op: str) -> T:
    return await run_store(fn, f"ledger.{op}", unavailable=LedgerUnavailableError)


async def _find_balance(user_id: PydanticObjectId) -> CreditBalance | None:
    return await _store(lambda: CreditBalance.find_one(CreditBalance.user_id == user_id), "balance_find")


async def _ensure_balance(user_id: PydanticObjectId) -> CreditBalance:
    """Return the user's balance row, creating it with 0 credits on first access."""
    bal = await _find_balance(user_id)
    if bal:
        return bal
    bal = CreditBalance(user_id=user_id, credits=0)
    try:
        await _store(bal.insert, "balance_create")
    except DuplicateKeyError:
        # Another request created it first
        bal = await _find_balance(user_id)
        if bal is None:
            raise LedgerUnavailableError()
        return bal
    log.info("credit_balance_created", user_id=str(user_id))
    return bal


async def get_balance(user_id: PydanticObjectId) -> int:
    """Return current credits for user, creating a zero balance if none exists."""
    bal = await _ensure_balance(user_id)
    return bal.credits


async def try_decrement(user_id: PydanticObjectId, op_key: str | None = None) -> bool:
    """Spend one credit if at least one is available. Returns False without mutation otherwise.

    op_key identifies this debit; a retry of an attempt that did land is recognised by
    the key and reported as success instead of spending a second credit.
    """
    await _ensure_balance(user_id)
    key = op_key or generate_idempotency_key("debit")
    result = await _store(
        lambda: CreditBalance.find_one(
            CreditBalance.user_id == user_id,
            CreditBalance.credits >= 1,
            CreditBalance.debit_keys != key,
        ).update(
            Inc({CreditBalance.credits: -1}),
            Push({CreditBalance.debit_keys: {"$each": [key], "$slice": -DEBIT_KEYS_KEPT}}),
            Set({CreditBalance.updated_at: datetime.utcnow()}),
        ),
        "decrement",
    )
    if result.modified_count == 1:
        log.info("credit_debited", user_id=str(user_id), op_key=key)
        return True
    bal = await _find_balance(user_id)
    if bal and key in bal.debit_keys:
        return True
    log.info("credit_debit_refused", user_id=str(user_id), credits=bal.credits if bal else 0)
    return False


async def increment(
    user_id: PydanticObjectId,
    credits: int,
    *,
    reason: str = "purchase",
    idempotency_key: str | None = None,
    amount: int = 0,
    currency: str | None = None,
    payment_intent_id: str | None = None,
) -> bool:
    """
    Add credits and write the PaymentRecord audit row.
    Returns True if this call applied the grant, False if idempotency_key was already applied.
    """
    if isinstance(credits, bool) or not isinstance(credits, int) or credits <= 0:
        raise BadRequestError("Credits must be a positive integer")
    if reason not in REASONS:
        raise BadRequestError(f"Invalid reason: {reason}")
    key = idempotency_key or generate_idempotency_key(reason)
    await _ensure_balance(user_id)
    result = await _store(
        lambda: CreditBalance.find_one(
            CreditBalance.user_id == user_id,
            CreditBalance.grant_keys != key,
        ).update(
            Inc({CreditBalance.credits: credits}),
            Push({CreditBalance.grant_keys: key}),
            Set({CreditBalance.updated_at: datetime.utcnow()}),
        ),
        "increment",
    )
    applied = result.modified_count == 1
    if applied:
        log.info("credit_granted", user_id=str(user_id), credits=credits, reason=reason, idempotency_key=key)
    else:
        log.warning("credit_grant_already_applied", user_id=str(user_id), idempotency_key=key)
    await _record_grant(
        PaymentRecord(
            user_id=user_id,
            amount=amount,
            currency=currency or get_settings().payment_currency,
            credits=credits,
            status="completed" if reason == "purchase" else "refunded",
            reason=reason,
            payment_intent_id=payment_intent_id,
            idempotency_key=key,
        )
    )
    return applied


async def _record_grant(record: PaymentRecord) -> None:
    """Insert the audit row unless one already exists for its idempotency key."""
    existing = await _store(
        lambda: PaymentRecord.find_one(PaymentRecord.idempotency_key == record.idempotency_key),
        "record_find",
    )
    if existing:
        return
    try:
        await _store(record.insert, "record_insert")
    except DuplicateKeyError:
        log.info("payment_record_exists", idempotency_key=record.idempotency_key)


async def list_records(user_id: PydanticObjectId, limit: int, offset: int) -> tuple[list[PaymentRecord], int]:
    """Return (records newest first, total count) for user."""
    records = await _store(
        lambda: PaymentRecord.find(PaymentRecord.user_id == user_id)
        .sort(-PaymentRecord.created_at)
        .skip(offset)
        .limit(limit)
        .to_list(),
        "record_list",
    )
    total = await _store(lambda: PaymentRecord.find(PaymentRecord.user_id == user_id).count(), "record_count")
    return records, total


def get_pricing() -> dict[str, Any]:
    s = get_settings()
    return {
        "unit_price": s.credit_unit_price,
        "currency": s.payment_currency,
        "credits_per_contact": 1,
    }
