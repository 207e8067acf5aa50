"""Payment intents and reconciliation, with the Stripe gateway faked out."""

import pytest
from beanie import PydanticObjectId

from app.core.exceptions import BadRequestError, InvalidPaymentMetadataError, NotFoundError
from app.models.audit_log import AuditLog
from app.models.credit_balance import CreditBalance
from app.models.payment_record import PaymentRecord
from app.services import credits as credits_service
from app.services import payments as payments_service


async def test_create_intent_prices_and_tags_metadata(user, gateway):
    out = await payments_service.create_intent(user.id, 5, gateway)
    assert out["credits"] == 5
    assert out["amount"] == 5 * 200
    assert out["paymentIntentId"] == "pi_test_1"
    assert out["clientSecret"] == "pi_test_1_secret_abc"
    assert gateway.created[0]["metadata"] == {"userId": str(user.id), "credits": "5"}
    assert gateway.created[0]["currency"] == "eur"
    # First-time purchaser gets a balance row
    assert await CreditBalance.find(CreditBalance.user_id == user.id).count() == 1


@pytest.mark.parametrize("bad", [0, -1, True])
async def test_create_intent_rejects_non_positive(user, gateway, bad):
    with pytest.raises(BadRequestError):
        await payments_service.create_intent(user.id, bad, gateway)
    assert gateway.created == []


async def test_create_intent_unknown_user(gateway):
    with pytest.raises(NotFoundError):
        await payments_service.create_intent(PydanticObjectId(), 1, gateway)


async def test_round_trip_poll_credits_once(user, gateway):
    out = await payments_service.create_intent(user.id, 5, gateway)
    intent_id = out["paymentIntentId"]

    pending = await payments_service.get_status(user.id, intent_id, gateway)
    assert pending == {"status": "requires_payment_method", "message": "Payment requires a payment method"}
    assert await credits_service.get_balance(user.id) == 0

    gateway.set_status(intent_id, "succeeded")
    done = await payments_service.get_status(user.id, intent_id, gateway)
    assert done == {"status": "succeeded", "message": "Payment successful and credits added"}
    assert await credits_service.get_balance(user.id) == 5

    # Polling again does not credit again
    await payments_service.get_status(user.id, intent_id, gateway)
    assert await credits_service.get_balance(user.id) == 5
    records = await PaymentRecord.find(PaymentRecord.payment_intent_id == intent_id).to_list()
    assert len(records) == 1
    assert records[0].credits == 5
    assert records[0].amount == 1000


async def test_reconcile_twice_same_intent(user):
    assert await payments_service.reconcile(user.id, 3, "pi_dup", amount=600) is True
    assert await payments_service.reconcile(user.id, 3, "pi_dup", amount=600) is False
    assert await credits_service.get_balance(user.id) == 3
    assert await PaymentRecord.find(PaymentRecord.payment_intent_id == "pi_dup").count() == 1
    assert await AuditLog.find(AuditLog.event_type == "payment_reconciled").count() == 1


async def test_reconcile_unknown_user_credits_nothing():
    ghost = PydanticObjectId()
    with pytest.raises(InvalidPaymentMetadataError):
        await payments_service.reconcile(ghost, 3, "pi_ghost")
    assert await CreditBalance.find(CreditBalance.user_id == ghost).count() == 0


async def test_status_of_other_users_intent_is_not_found(user, other_user, gateway):
    out = await payments_service.create_intent(other_user.id, 2, gateway)
    gateway.set_status(out["paymentIntentId"], "succeeded")
    with pytest.raises(NotFoundError):
        await payments_service.get_status(user.id, out["paymentIntentId"], gateway)
    assert await credits_service.get_balance(other_user.id) == 0


async def test_succeeded_intent_with_bad_metadata_is_refused(user, gateway):
    out = await payments_service.create_intent(user.id, 2, gateway)
    intent_id = out["paymentIntentId"]
    gateway.set_status(intent_id, "succeeded", metadata={"userId": str(user.id), "credits": "lots"})
    with pytest.raises(InvalidPaymentMetadataError):
        await payments_service.get_status(user.id, intent_id, gateway)
    assert await credits_service.get_balance(user.id) == 0
    assert await PaymentRecord.find(PaymentRecord.user_id == user.id).count() == 0
    anomaly = await AuditLog.find_one(AuditLog.event_type == "payment_metadata_invalid")
    assert anomaly is not None
    assert anomaly.entity_id == intent_id


async def test_get_status_requires_intent_id(user, gateway):
    with pytest.raises(BadRequestError):
        await payments_service.get_status(user.id, "  ", gateway)


@pytest.mark.parametrize(
    "metadata",
    [
        None,
        {},
        {"credits": "5"},
        {"userId": "not-an-object-id", "credits": "5"},
        {"userId": str(PydanticObjectId()), "credits": "0"},
        {"userId": str(PydanticObjectId()), "credits": "-2"},
        {"userId": str(PydanticObjectId()), "credits": "2.5"},
        {"userId": str(PydanticObjectId()), "credits": "abc"},
        {"userId": str(PydanticObjectId())},
    ],
)
def test_parse_metadata_rejects(metadata):
    with pytest.raises(InvalidPaymentMetadataError):
        payments_service.parse_metadata(metadata)


def test_parse_metadata_accepts_provider_strings():
    uid = PydanticObjectId()
    meta = payments_service.parse_metadata({"userId": str(uid), "credits": "10"})
    assert meta.userId == uid
    assert meta.credits == 10


@pytest.mark.parametrize(
    "status,message",
    [
        ("requires_payment_method", "Payment requires a payment method"),
        ("requires_confirmation", "Payment requires confirmation"),
        ("requires_action", "Payment requires additional action"),
        ("processing", "Payment is processing"),
        ("canceled", "Payment was canceled"),
        ("requires_capture", "Payment status unknown"),
    ],
)
def test_status_messages(status, message):
    assert payments_service.status_message(status) == message
