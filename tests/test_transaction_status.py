from services.ticket_purchase.services.transaction_status_service import (
    TransactionStatusService,
    gateway_tx_hash,
)
from shared.database.models import PaystackTransaction
from tests.conftest import scalar_result


def transaction(**overrides) -> PaystackTransaction:
    fields = dict(reference="TeeRex-e-1", user_email="ada@teerex.xyz", status="success",
                  gateway_response=None, issuance_last_error=None)
    fields.update(overrides)
    return PaystackTransaction(**fields)


def test_missing_transaction():
    status = TransactionStatusService.to_status(None)

    assert not status.found
    assert status.gateway_response is None


def test_granted_transaction_exposes_hash():
    tx = transaction(gateway_response={"key_granted": True, "transaction_hash": "0xgrant", "amount": 500050})

    status = TransactionStatusService.to_status(tx)

    assert status.found
    assert status.key_granted
    assert status.gateway_response.key_granted
    assert status.gateway_response.tx_hash == "0xgrant"


def test_paid_but_not_granted():
    status = TransactionStatusService.to_status(transaction(gateway_response={"status": "success"}))

    assert status.status == "success"
    assert not status.key_granted
    assert status.gateway_response.tx_hash is None


def test_null_gateway_response_stays_null():
    status = TransactionStatusService.to_status(transaction(status="pending", issuance_last_error="amount_mismatch"))

    assert status.gateway_response is None
    assert status.issuance_last_error == "amount_mismatch"


def test_hash_alias_precedence():
    assert gateway_tx_hash({"hash": "0x5", "tx_hash": "0x1"}) == "0x1"
    assert gateway_tx_hash({"hash": "0x5"}) == "0x5"
    assert gateway_tx_hash({}) is None


async def test_get_status_reads_by_reference(db):
    db.execute.return_value = scalar_result(transaction(gateway_response={"key_granted": True, "tx_hash": "0x1"}))

    status = await TransactionStatusService.get_status(db, "TeeRex-e-1")

    assert status.key_granted
    db.execute.assert_awaited_once()
