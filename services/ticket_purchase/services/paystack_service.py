"""Paystack (NGN) checkout, webhook handling and key issuance bookkeeping"""
import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from services.event_management.services.event_service import has_fiat
from services.ticket_purchase.models.purchase import CheckoutSession, WebhookAck
from shared.database.models import Event, PaystackTransaction
from shared.functions.client import BackendFunctionsClient, succeeded
from shared.utils.email import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

CHARGE_SUCCESS = "charge.success"
# Fields written by issuance that a later webhook must not erase
ISSUANCE_FIELDS = ("key_granted", "tx_hash", "key_grant_tx_hash", "key_granted_at")


class PaystackError(Exception):
    """Paystack rejected the request or could not be reached"""


def build_reference(event_id, now_ms: Optional[int] = None) -> str:
    """TeeRex-<event_id>-<epoch ms>"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"TeeRex-{event_id}-{now_ms}"


def to_kobo(ngn_amount) -> int:
    return int((Decimal(str(ngn_amount)) * 100).to_integral_value())


def build_metadata(event_id, email: str, wallet_address: str, phone: Optional[str] = None) -> Dict[str, Any]:
    return {
        "event_id": str(event_id),
        "user_wallet_address": wallet_address,
        "custom_fields": [
            {"display_name": "User Wallet Address", "variable_name": "user_wallet_address", "value": wallet_address},
            {"display_name": "Event ID", "variable_name": "event_id", "value": str(event_id)},
            {"display_name": "User Email", "variable_name": "user_email", "value": email},
            {"display_name": "User Phone", "variable_name": "user_phone", "value": phone or ""},
        ],
    }


class PaystackService:
    def __init__(
        self,
        http: httpx.AsyncClient,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dispatch_issuance: Optional[Callable[[str], None]] = None,
    ):
        self.http = http
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.dispatch_issuance = dispatch_issuance or _enqueue_key_grant

    async def initialize_checkout(
        self,
        db: AsyncSession,
        event: Event,
        email: str,
        wallet_address: str,
        phone: Optional[str] = None,
    ) -> CheckoutSession:
        """Record a pending transaction and open a Paystack checkout for it"""
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValueError("Please enter your email address to proceed.")
        if not wallet_address or not wallet_address.strip():
            raise ValueError("Please enter your wallet address to receive the ticket.")
        if not has_fiat(event) or not event.ngn_price or not self.secret_key:
            raise ValueError("Payment is not properly configured for this event.")

        wallet = wallet_address.strip().lower()
        reference = build_reference(event.id)
        amount = to_kobo(event.ngn_price)
        metadata = build_metadata(event.id, email, wallet, phone)

        stmt = insert(PaystackTransaction).values(
            reference=reference,
            event_id=event.id,
            user_email=email,
            amount=amount,
            currency="NGN",
            status="pending",
            gateway_response={"metadata": metadata},
        ).on_conflict_do_update(
            index_elements=[PaystackTransaction.reference],
            set_={"user_email": email, "amount": amount, "status": "pending"},
        )
        await db.execute(stmt)
        await db.commit()

        payload = {
            "email": email,
            "amount": amount,
            "currency": "NGN",
            "reference": reference,
            "metadata": metadata,
        }
        if settings.PAYSTACK_CALLBACK_URL:
            payload["callback_url"] = settings.PAYSTACK_CALLBACK_URL

        try:
            response = await self.http.post(
                f"{self.base_url}/transaction/initialize",
                json=payload,
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Paystack initialize failed for {reference}: {e}")
            raise PaystackError("Could not initialize payment. Please try again.") from e

        data = body.get("data") or {}
        if not response.is_success or not body.get("status") or not data.get("authorization_url"):
            logger.error(f"Paystack rejected initialize for {reference}: {body.get('message')}")
            raise PaystackError("Could not initialize payment. Please try again.")

        logger.info(f"Paystack checkout started: {reference} ({amount} kobo)")
        return CheckoutSession(
            reference=reference,
            authorization_url=data["authorization_url"],
            access_code=data.get("access_code"),
        )

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """HMAC-SHA512 of the raw body with the secret key (x-paystack-signature)"""
        if not signature or not self.secret_key:
            return False
        expected = hmac.new(self.secret_key.encode(), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    async def apply_webhook(self, db: AsyncSession, payload: Dict[str, Any]) -> WebhookAck:
        """Record a successful charge and queue ticket issuance for it"""
        if payload.get("event") != CHARGE_SUCCESS:
            logger.info(f"Ignoring Paystack event {payload.get('event')}")
            return WebhookAck(handled=False)

        data = payload.get("data") or {}
        reference = data.get("reference")
        if not reference:
            return WebhookAck(handled=False)

        result = await db.execute(
            select(PaystackTransaction)
            .where(PaystackTransaction.reference == reference)
            .with_for_update()
        )
        tx = result.scalar_one_or_none()
        if tx is None:
            logger.warning(f"Paystack webhook for unknown reference {reference}")
            return WebhookAck(handled=False, reference=reference)

        existing = dict(tx.gateway_response or {})
        merged = {**existing, **data}
        for key in ISSUANCE_FIELDS:
            if key in existing:
                merged[key] = existing[key]

        tx.status = str(data.get("status") or "success").lower()
        tx.gateway_response = merged
        tx.verified_at = datetime.now(timezone.utc)

        queue = tx.status == "success" and not existing.get("key_granted")
        paid = data.get("amount")
        if queue and tx.amount is not None and paid is not None and int(paid) != tx.amount:
            logger.error(f"Paystack amount mismatch for {reference}: paid {paid}, expected {tx.amount}")
            tx.issuance_last_error = "amount_mismatch"
            queue = False

        await db.commit()

        if queue:
            try:
                self.dispatch_issuance(reference)
            except Exception as e:
                # Poller sends the buyer to manual reconciliation
                logger.error(f"Could not queue key grant for {reference}: {e}", exc_info=True)
                queue = False

        return WebhookAck(handled=True, reference=reference, queued=queue)

    @staticmethod
    async def grant_keys(db: AsyncSession, functions: BackendFunctionsClient, reference: str) -> Dict[str, Any]:
        """
        Grant the key for a paid reference and record the result.

        Call under a per-reference lock; an already granted reference is
        left untouched.
        """
        result = await db.execute(
            select(PaystackTransaction).where(PaystackTransaction.reference == reference)
        )
        tx = result.scalar_one_or_none()
        if tx is None:
            raise ValueError(f"Transaction {reference} not found")

        gateway = dict(tx.gateway_response or {})
        if gateway.get("key_granted"):
            return {"status": "already_granted", "tx_hash": gateway.get("tx_hash")}
        if tx.status != "success":
            return {"status": "skipped", "reason": f"payment status {tx.status}"}

        response = await functions.invoke("paystack-grant-keys", {"transactionReference": reference})

        if not succeeded(response):
            error = response.get("error") or "grant_failed"
            tx.issuance_last_error = error
            await db.commit()
            logger.error(f"Key grant failed for {reference}: {error}")
            return {"status": "failed", "error": error}

        tx_hash = response.get("txHash") or response.get("tx_hash")
        gateway.update({
            "key_granted": True,
            "key_granted_at": datetime.now(timezone.utc).isoformat(),
        })
        if tx_hash:
            gateway["tx_hash"] = tx_hash
            gateway["key_grant_tx_hash"] = tx_hash
        tx.gateway_response = gateway
        tx.issuance_last_error = None
        await db.commit()

        logger.info(f"Key granted for {reference}: {tx_hash}")
        return {"status": "granted", "tx_hash": tx_hash}


def _enqueue_key_grant(reference: str) -> None:
    from services.ticket_purchase.tasks.issuance_tasks import grant_paystack_keys_task
    grant_paystack_keys_task.delay(reference)
