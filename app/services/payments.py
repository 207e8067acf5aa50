"""Stripe payment intents and reconciliation into the credits ledger.

Two entry points credit a succeeded intent: the payment_intent.succeeded webhook and
the client's status poll. Both go through reconcile(), which keys the grant on the
intent id so the ledger is incremented once per intent whichever path arrives first
and however often the webhook is redelivered.
"""

from typing import Any

from beanie import PydanticObjectId
from pydantic import BaseModel, ValidationError, field_validator

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import (
    BadRequestError,
    ConfigurationError,
    InvalidPaymentMetadataError,
    NotFoundError,
)
from app.core.logging import get_logger
from app.core.security import verify_stripe_webhook
from app.models.user import User
from app.services import credits as credits_service
from app.services.gateway import IntentInfo, PaymentGateway

log = get_logger(__name__)

SUCCEEDED = "succeeded"

STATUS_MESSAGES = {
    "requires_payment_method": "Payment requires a payment method",
    "requires_confirmation": "Payment requires confirmation",
    "requires_action": "Payment requires additional action",
    "processing": "Payment is processing",
    "canceled": "Payment was canceled",
    SUCCEEDED: "Payment successful and credits added",
}


class PaymentMetadata(BaseModel):
    """Intent metadata as written by create_intent: {"userId": <ObjectId>, "credits": "<n>"}."""

    userId: PydanticObjectId
    credits: int

    @field_validator("credits", mode="before")
    @classmethod
    def _credits_positive_int(cls, v: Any) -> int:
        if isinstance(v, bool):
            raise ValueError("credits must be a positive integer")
        if isinstance(v, str):
            v = v.strip()
            if not v.isdigit():
                raise ValueError("credits must be a positive integer")
            v = int(v)
        if not isinstance(v, int) or v <= 0:
            raise ValueError("credits must be a positive integer")
        return v


def parse_metadata(metadata: dict[str, Any] | None) -> PaymentMetadata:
    """Parse intent metadata; raise InvalidPaymentMetadataError rather than guess."""
    if not metadata:
        raise InvalidPaymentMetadataError("Missing payment metadata")
    try:
        return PaymentMetadata.model_validate(metadata)
    except ValidationError as e:
        raise InvalidPaymentMetadataError(
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, "Payment status unknown")


def idempotency_key_for_intent(intent_id: str) -> str:
    return f"stripe_pi_{intent_id}"


async def create_intent(
    user_id: PydanticObjectId,
    credit_amount: int,
    gateway: PaymentGateway,
    idempotency_key: str | None = None,
) -> dict:
    """Create a PaymentIntent for credit_amount credits; return what the client needs to confirm it."""
    if isinstance(credit_amount, bool) or not isinstance(credit_amount, int) or credit_amount <= 0:
        raise BadRequestError("Credit amount must be a positive integer")
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    # First-time purchasers have no balance row yet
    await credits_service.get_balance(user_id)

    settings = get_settings()
    total = credit_amount * settings.credit_unit_price
    intent = await gateway.create_intent(
        amount=total,
        currency=settings.payment_currency,
        metadata={"userId": str(user_id), "credits": str(credit_amount)},
        idempotency_key=idempotency_key,
    )
    log.info(
        "payment_intent_created",
        user_id=str(user_id),
        payment_intent_id=intent.id,
        credits=credit_amount,
        amount=total,
    )
    return {
        "clientSecret": intent.client_secret,
        "amount": total,
        "credits": credit_amount,
        "paymentIntentId": intent.id,
    }


async def reconcile(
    user_id: PydanticObjectId,
    credits: int,
    source_intent_id: str,
    amount: int = 0,
    currency: str | None = None,
) -> bool:
    """
    Credit a succeeded intent exactly once.
    Returns True if credits were added by this call, False if the intent was already reconciled.
    """
    user = await User.get(user_id)
    if not user:
        raise InvalidPaymentMetadataError("Payment references an unknown user")
    applied = await credits_service.increment(
        user_id,
        credits,
        reason="purchase",
        idempotency_key=idempotency_key_for_intent(source_intent_id),
        amount=amount,
        currency=currency,
        payment_intent_id=source_intent_id,
    )
    if applied:
        log.info("payment_reconciled", user_id=str(user_id), payment_intent_id=source_intent_id, credits=credits)
        await log_event(
            str(user_id), "payment_reconciled", "payment", source_intent_id,
            {"credits": credits, "amount": amount},
        )
    else:
        log.info("payment_already_reconciled", user_id=str(user_id), payment_intent_id=source_intent_id)
    return applied


async def _reject_metadata(intent: IntentInfo, exc: InvalidPaymentMetadataError, source: str) -> None:
    log.error(
        "payment_metadata_invalid",
        payment_intent_id=intent.id,
        source=source,
        metadata=intent.metadata,
        reason=exc.message,
        errors=exc.details.get("errors"),
    )
    await log_event(
        None, "payment_metadata_invalid", "payment", intent.id,
        {"source": source, "metadata": intent.metadata},
    )


async def get_status(user_id: PydanticObjectId, intent_id: str, gateway: PaymentGateway) -> dict:
    """Poll path: fetch intent status; reconcile first if it has succeeded."""
    if not intent_id or not intent_id.strip():
        raise BadRequestError("Missing payment intent ID")
    intent = await gateway.retrieve_intent(intent_id.strip())
    owner = (intent.metadata or {}).get("userId")
    if owner is not None and str(owner) != str(user_id):
        # Never reveal another user's payment
        raise NotFoundError("Payment intent not found")

    if intent.status == SUCCEEDED:
        try:
            meta = parse_metadata(intent.metadata)
            await reconcile(meta.userId, meta.credits, intent.id, amount=intent.amount, currency=intent.currency)
        except InvalidPaymentMetadataError as e:
            await _reject_metadata(intent, e, "poll")
            raise

    return {"status": intent.status, "message": status_message(intent.status)}


async def handle_webhook(payload: bytes, signature: str | None) -> dict:
    """Webhook path: verify signature, then reconcile payment_intent.succeeded.

    Ignored event types and unusable metadata are acknowledged so Stripe stops
    redelivering; store outages propagate so it retries.
    """
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        raise ConfigurationError("Webhook secret is not configured")
    try:
        event = verify_stripe_webhook(payload, signature or "", settings.stripe_webhook_secret)
    except BadRequestError as e:
        log.warning("webhook_signature_invalid", error=e.message)
        raise

    event_type = event.get("type")
    event_id = event.get("id")
    if event_type != "payment_intent.succeeded":
        log.info("webhook_ignored", event_id=event_id, event_type=event_type)
        return {"received": True}

    obj = (event.get("data") or {}).get("object") or {}
    if not obj.get("id"):
        log.error("webhook_payload_invalid", event_id=event_id)
        return {"received": True}
    intent = IntentInfo.from_provider(obj)
    try:
        meta = parse_metadata(intent.metadata)
        await reconcile(meta.userId, meta.credits, intent.id, amount=intent.amount, currency=intent.currency)
    except InvalidPaymentMetadataError as e:
        await _reject_metadata(intent, e, "webhook")
    return {"received": True}
