import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest

from services.ticket_purchase.services.paystack_service import (
    PaystackError,
    PaystackService,
    build_metadata,
    build_reference,
    to_kobo,
)
from shared.database.models import PaystackTransaction
from tests.conftest import BUYER_WALLET, make_event, scalar_result

SECRET = "sk_test_teerex"


def fiat_event(**overrides):
    fields = dict(payment_methods=["fiat"], currency="NGN", price=Decimal("0"), ngn_price=Decimal("5000.50"))
    fields.update(overrides)
    return make_event(**fields)


def service_for(handler=None, dispatch=None) -> PaystackService:
    handler = handler or (lambda request: httpx.Response(500))
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PaystackService(http, secret_key=SECRET, base_url="https://api.paystack.co", dispatch_issuance=dispatch or MagicMock())


def make_transaction(**overrides) -> PaystackTransaction:
    fields = dict(
        reference="TeeRex-e-1",
        user_email="ada@teerex.xyz",
        amount=500050,
        status="pending",
        gateway_response=None,
        issuance_last_error=None,
    )
    fields.update(overrides)
    return PaystackTransaction(**fields)


def test_reference_and_amount_helpers():
    assert build_reference("e-1", now_ms=1700000000000) == "TeeRex-e-1-1700000000000"
    assert to_kobo(Decimal("5000.50")) == 500050
    assert to_kobo(100) == 10000


def test_metadata_custom_fields():
    metadata = build_metadata("e-1", "ada@teerex.xyz", "0xabc")

    fields = {f["variable_name"]: f["value"] for f in metadata["custom_fields"]}
    assert fields == {
        "user_wallet_address": "0xabc",
        "event_id": "e-1",
        "user_email": "ada@teerex.xyz",
        "user_phone": "",
    }


def test_signature_verification():
    service = service_for()
    body = b'{"event":"charge.success"}'
    signature = hmac.new(SECRET.encode(), body, hashlib.sha512).hexdigest()

    assert service.verify_signature(body, signature)
    assert not service.verify_signature(body, "0" * 128)
    assert not service.verify_signature(body, None)
    assert not service.verify_signature(body + b" ", signature)


async def test_initialize_checkout_records_pending_transaction(db):
    sent = {}

    def handler(request: httpx.Request):
        sent["auth"] = request.headers["authorization"]
        sent["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "status": True,
            "data": {"authorization_url": "https://checkout.paystack.com/abc", "access_code": "abc"},
        })

    service = service_for(handler)
    event = fiat_event()

    session = await service.initialize_checkout(db, event, "Ada@TeeRex.xyz", BUYER_WALLET)

    assert session.authorization_url == "https://checkout.paystack.com/abc"
    assert session.reference.startswith(f"TeeRex-{event.id}-")
    assert sent["auth"] == f"Bearer {SECRET}"
    assert sent["body"]["amount"] == 500050
    assert sent["body"]["email"] == "ada@teerex.xyz"
    assert sent["body"]["currency"] == "NGN"
    assert sent["body"]["metadata"]["user_wallet_address"] == BUYER_WALLET.lower()
    db.execute.assert_awaited_once()
    db.commit.assert_awaited_once()


@pytest.mark.parametrize(
    "email, wallet, event, message",
    [
        ("", BUYER_WALLET, fiat_event(), "Please enter your email address to proceed."),
        ("ada@teerex.xyz", " ", fiat_event(), "Please enter your wallet address to receive the ticket."),
        ("ada@teerex.xyz", BUYER_WALLET, fiat_event(ngn_price=None), "Payment is not properly configured for this event."),
        ("ada@teerex.xyz", BUYER_WALLET, fiat_event(payment_methods=["crypto"]), "Payment is not properly configured for this event."),
    ],
)
async def test_initialize_checkout_validation(db, email, wallet, event, message):
    with pytest.raises(ValueError, match=message):
        await service_for().initialize_checkout(db, event, email, wallet)
    db.execute.assert_not_awaited()


async def test_initialize_checkout_rejected_by_paystack(db):
    def handler(request):
        return httpx.Response(400, json={"status": False, "message": "Invalid key"})

    with pytest.raises(PaystackError, match="Could not initialize payment"):
        await service_for(handler).initialize_checkout(db, fiat_event(), "ada@teerex.xyz", BUYER_WALLET)


async def test_webhook_records_payment_and_queues_issuance(db):
    dispatch = MagicMock()
    tx = make_transaction(gateway_response={"metadata": {"event_id": "e-1"}})
    db.execute.return_value = scalar_result(tx)

    ack = await service_for(dispatch=dispatch).apply_webhook(db, {
        "event": "charge.success",
        "data": {"reference": "TeeRex-e-1", "status": "success", "amount": 500050},
    })

    assert ack.handled and ack.queued
    assert tx.status == "success"
    assert tx.verified_at is not None
    assert tx.gateway_response["metadata"] == {"event_id": "e-1"}
    assert tx.gateway_response["amount"] == 500050
    db.commit.assert_awaited_once()
    dispatch.assert_called_once_with("TeeRex-e-1")


async def test_webhook_redelivery_keeps_issuance_fields(db):
    dispatch = MagicMock()
    tx = make_transaction(status="success", gateway_response={"key_granted": True, "tx_hash": "0xgrant"})
    db.execute.return_value = scalar_result(tx)

    ack = await service_for(dispatch=dispatch).apply_webhook(db, {
        "event": "charge.success",
        "data": {"reference": "TeeRex-e-1", "status": "success", "key_granted": False, "tx_hash": None},
    })

    assert ack.handled and not ack.queued
    assert tx.gateway_response["key_granted"] is True
    assert tx.gateway_response["tx_hash"] == "0xgrant"
    dispatch.assert_not_called()


async def test_webhook_amount_mismatch_is_not_issued(db):
    dispatch = MagicMock()
    tx = make_transaction()
    db.execute.return_value = scalar_result(tx)

    ack = await service_for(dispatch=dispatch).apply_webhook(db, {
        "event": "charge.success",
        "data": {"reference": "TeeRex-e-1", "status": "success", "amount": 100},
    })

    assert not ack.queued
    assert tx.issuance_last_error == "amount_mismatch"
    dispatch.assert_not_called()


async def test_webhook_ignores_other_events_and_unknown_references(db):
    service = service_for()

    assert not (await service.apply_webhook(db, {"event": "transfer.success", "data": {}})).handled

    db.execute.return_value = scalar_result(None)
    ack = await service.apply_webhook(db, {"event": "charge.success", "data": {"reference": "nope"}})
    assert not ack.handled
    db.commit.assert_not_awaited()


async def test_grant_keys_records_hash(db, functions):
    tx = make_transaction(status="success", gateway_response={"metadata": {}})
    db.execute.return_value = scalar_result(tx)
    functions.invoke.return_value = {"success": True, "txHash": "0xgrant"}

    result = await PaystackService.grant_keys(db, functions, "TeeRex-e-1")

    assert result == {"status": "granted", "tx_hash": "0xgrant"}
    assert tx.gateway_response["key_granted"] is True
    assert tx.gateway_response["key_grant_tx_hash"] == "0xgrant"
    assert tx.issuance_last_error is None
    functions.invoke.assert_awaited_once_with("paystack-grant-keys", {"transactionReference": "TeeRex-e-1"})


async def test_grant_keys_is_idempotent(db, functions):
    tx = make_transaction(status="success", gateway_response={"key_granted": True, "tx_hash": "0xgrant"})
    db.execute.return_value = scalar_result(tx)

    result = await PaystackService.grant_keys(db, functions, "TeeRex-e-1")

    assert result["status"] == "already_granted"
    functions.invoke.assert_not_awaited()


async def test_grant_keys_skips_unpaid(db, functions):
    db.execute.return_value = scalar_result(make_transaction(status="pending"))

    result = await PaystackService.grant_keys(db, functions, "TeeRex-e-1")

    assert result["status"] == "skipped"
    functions.invoke.assert_not_awaited()


async def test_grant_failure_is_recorded(db, functions):
    tx = make_transaction(status="success")
    db.execute.return_value = scalar_result(tx)
    functions.invoke.return_value = {"ok": False, "error": "registration_closed"}

    result = await PaystackService.grant_keys(db, functions, "TeeRex-e-1")

    assert result == {"status": "failed", "error": "registration_closed"}
    assert tx.issuance_last_error == "registration_closed"
    db.commit.assert_awaited_once()
