"""Read model for fiat payment and key issuance progress"""
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.ticket_purchase.models.purchase import GatewayStatus, TransactionStatusResponse
from shared.database.models import PaystackTransaction

# Keys under which issuance has recorded the grant transaction hash
GATEWAY_HASH_KEYS = ("tx_hash", "transactionHash", "transaction_hash", "key_grant_tx_hash", "hash")


def gateway_tx_hash(gateway_response: Optional[Dict[str, Any]]) -> Optional[str]:
    if not gateway_response:
        return None
    for key in GATEWAY_HASH_KEYS:
        if gateway_response.get(key):
            return gateway_response[key]
    return None


class TransactionStatusService:
    @staticmethod
    def to_status(tx: Optional[PaystackTransaction]) -> TransactionStatusResponse:
        if tx is None:
            return TransactionStatusResponse(found=False)

        raw = tx.gateway_response
        key_granted = bool(raw and raw.get("key_granted"))
        gateway = None
        if raw is not None:
            gateway = GatewayStatus(key_granted=key_granted, tx_hash=gateway_tx_hash(raw))

        return TransactionStatusResponse(
            found=True,
            status=tx.status,
            key_granted=key_granted,
            gateway_response=gateway,
            issuance_last_error=tx.issuance_last_error,
        )

    @staticmethod
    async def get_status(db: AsyncSession, reference: str) -> TransactionStatusResponse:
        result = await db.execute(
            select(PaystackTransaction).where(PaystackTransaction.reference == reference)
        )
        return TransactionStatusService.to_status(result.scalar_one_or_none())
