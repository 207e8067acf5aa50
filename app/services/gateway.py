"""Stripe PaymentIntent access behind a small async interface.

Provider objects are normalized to IntentInfo so the rest of the app never touches
stripe types. Connection errors, rate limits and Stripe-side 5xx are retried under
the provider retry policy; a rejected API key is a configuration error and is not.
"""

from typing import Any, Awaitable, Callable, Protocol

import stripe
from pydantic import BaseModel, Field

from app.core.config import Settings, get_settings
from app.core.exceptions import BadRequestError, ConfigurationError, NotFoundError, ServiceUnavailableError
from app.core.logging import get_logger
from app.core.retry import RetryPolicy

log = get_logger(__name__)

PROVIDER_TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


class IntentInfo(BaseModel):
    id: str
    client_secret: str | None = None
    status: str
    amount: int = 0
    currency: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_provider(cls, obj: Any) -> "IntentInfo":
        data = _plain(obj)
        return cls(
            id=data["id"],
            client_secret=data.get("client_secret"),
            status=data.get("status") or "",
            amount=data.get("amount_received") or data.get("amount") or 0,
            currency=data.get("currency") or "",
            metadata=_plain(data.get("metadata")),
        )


def _plain(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(value)


class PaymentGateway(Protocol):
    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> IntentInfo: ...

    async def retrieve_intent(self, intent_id: str) -> IntentInfo: ...


class StripeGateway:
    def __init__(self, api_key: str, retry: RetryPolicy):
        self._api_key = api_key
        self._retry = retry

    async def _call(self, fn: Callable[[], Awaitable[Any]], op: str) -> Any:
        try:
            return await self._retry.run(fn, op=op)
        except (stripe.AuthenticationError, stripe.PermissionError) as e:
            log.error("stripe_credentials_rejected", op=op, error=str(e))
            raise ConfigurationError("Payment provider rejected credentials") from e
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise NotFoundError("Payment intent not found") from e
            log.warning("stripe_invalid_request", op=op, error=str(e))
            raise BadRequestError("Payment request rejected by provider") from e
        except self._retry.unavailable_errors as e:
            log.error("stripe_unavailable", op=op, error=repr(e))
            raise ServiceUnavailableError("Payment provider unavailable, please try again") from e

    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> IntentInfo:
        intent = await self._call(
            lambda: stripe.PaymentIntent.create_async(
                api_key=self._api_key,
                idempotency_key=idempotency_key,
                amount=amount,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            ),
            "create_intent",
        )
        return IntentInfo.from_provider(intent)

    async def retrieve_intent(self, intent_id: str) -> IntentInfo:
        intent = await self._call(
            lambda: stripe.PaymentIntent.retrieve_async(intent_id, api_key=self._api_key),
            "retrieve_intent",
        )
        return IntentInfo.from_provider(intent)


def build_provider_retry(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        transient=PROVIDER_TRANSIENT_ERRORS,
        attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
        timeout=settings.provider_timeout_seconds,
        name="stripe",
    )


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; fails the request when the Stripe secret key is not configured."""
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise ConfigurationError("Missing Stripe secret key")
    return StripeGateway(settings.stripe_secret_key, build_provider_retry(settings))
