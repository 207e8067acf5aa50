from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from app.core.exceptions import BadRequestError, NotFoundError
from app.deps import get_current_user
from app.models.user import User
from app.services import payments as payments_service
from app.services.gateway import PaymentGateway, get_payment_gateway

router = APIRouter()
webhook_router = APIRouter()


class CreatePaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    amount: int = Field(gt=0, description="Number of credits to buy")


@router.post("")
async def create_payment(
    body: CreatePaymentRequest,
    user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """Create a PaymentIntent for `amount` credits; the client confirms it with clientSecret."""
    if body.user_id is not None and body.user_id != str(user.id):
        raise NotFoundError("User not found")
    return await payments_service.create_intent(
        user.id,
        body.amount,
        gateway,
        idempotency_key=idempotency_key.strip() if idempotency_key else None,
    )


@router.get("")
async def payment_status(
    payment_intent_id: str | None = Query(default=None, alias="paymentIntentId"),
    user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Poll intent status after client-side confirmation; credits are added once it has succeeded."""
    if not payment_intent_id:
        raise BadRequestError("Missing payment intent ID")
    return await payments_service.get_status(user.id, payment_intent_id, gateway)


@webhook_router.post("")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
):
    """Stripe webhook: payment_intent.succeeded -> add credits (idempotent)."""
    body = await request.body()
    return await payments_service.handle_webhook(body, stripe_signature)
