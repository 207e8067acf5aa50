import hashlib
import uuid
from typing import Any

import orjson
import stripe
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings
from app.core.exceptions import BadRequestError

SESSION_MAX_AGE = 7 * 24 * 3600  # 7 days


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="contactvault-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    serializer = get_session_serializer()
    return serializer.dumps(payload)


def load_session_cookie(cookie_value: str, max_age_seconds: int = SESSION_MAX_AGE) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None


def generate_idempotency_key(prefix: str = "") -> str:
    key = str(uuid.uuid4())
    return f"{prefix}_{key}" if prefix else key


def verify_stripe_webhook(payload: bytes, signature: str, secret: str) -> dict[str, Any]:
    """Check the Stripe-Signature header (t=...,v1=...) and return the decoded event.

    Raises BadRequestError for a bad signature, a stale timestamp or an undecodable body.
    """
    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            signature,
            secret,
            stripe.Webhook.DEFAULT_TOLERANCE,
        )
    except stripe.SignatureVerificationError as e:
        raise BadRequestError("Invalid webhook signature") from e
    except UnicodeDecodeError as e:
        raise BadRequestError("Invalid webhook payload") from e
    try:
        event = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise BadRequestError("Invalid webhook payload") from e
    if not isinstance(event, dict):
        raise BadRequestError("Invalid webhook payload")
    return event
