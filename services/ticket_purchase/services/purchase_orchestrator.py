"""
Ticket purchase orchestration.

Decides, for one buyer and one event, between a fiat checkout, a
sponsored (gasless) claim and a wallet-paid key purchase, and reports
the result as a PurchaseOutcome. The chain is authoritative: once a key
is on-chain the purchase succeeded, whatever happens to the off-chain
records afterwards.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from services.event_management.models.event import Notice
from services.event_management.services.event_service import (
    FIAT,
    gasless_error_message,
    has_fiat,
    is_fiat_only,
    is_fiat_priced,
    is_free_in_db,
    is_registration_closed,
)
from services.event_management.services.gating_service import AllowListGate
from services.ticket_purchase.models.purchase import Buyer, PurchaseOutcome
from services.ticket_purchase.services.gasless import GaslessFallback
from services.ticket_purchase.services.paystack_service import PaystackError, PaystackService
from services.ticket_purchase.services.wallet import WalletSigner
from shared.chain.lock_client import ChainReadError, LockClient
from shared.chain.network_config import NetworkConfigService, NetworkNotConfigured
from shared.database.models import Event
from shared.functions.client import BackendFunctionsClient, FunctionsError, succeeded
from shared.utils.email import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

REGISTRATION_WARNING = "Your ticket is on-chain but its record could not be saved yet. It will appear in My Tickets shortly."
EMAIL_WARNING = "Your ticket confirmation email could not be sent."
PARTIAL_SYNC_WARNING = "Ticket minted successfully, but some records may sync later."


def _enqueue_ticket_email(payload: Dict[str, Any], access_token: Optional[str]) -> None:
    from services.ticket_purchase.tasks.email_tasks import send_ticket_email_task
    send_ticket_email_task.delay(access_token=access_token, **payload)


class PurchaseOrchestrator:
    def __init__(
        self,
        functions: BackendFunctionsClient,
        lock_client: LockClient,
        networks: NetworkConfigService,
        paystack: Optional[PaystackService] = None,
        dispatch_ticket_email: Optional[Callable[[Dict[str, Any], Optional[str]], None]] = None,
        gasless_enabled: bool = True,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.functions = functions
        self.lock_client = lock_client
        self.networks = networks
        self.paystack = paystack
        self.dispatch_ticket_email = dispatch_ticket_email or _enqueue_ticket_email
        self.gasless_enabled = gasless_enabled
        self.now = now

    async def _explorer_url(self, chain_id: int, tx_hash: Optional[str]) -> Optional[str]:
        if not tx_hash:
            return None
        try:
            return await self.networks.explorer_tx_url(chain_id, tx_hash)
        except Exception as e:
            logger.warning(f"Explorer URL lookup failed for {tx_hash}: {e}")
            return tx_hash

    async def is_free_on_chain(self, event: Event) -> bool:
        """Lock price is zero even though the event is stored as paid"""
        if not event.lock_address or not event.chain_id:
            return False
        try:
            return await self.lock_client.get_key_price(event.lock_address, event.chain_id) == 0
        except (ChainReadError, NetworkNotConfigured) as e:
            logger.warning(f"Could not read key price for {event.lock_address}, assuming paid: {e}")
            return False

    async def handle_purchase(
        self,
        db: AsyncSession,
        event: Event,
        buyer: Buyer,
        wallet: Optional[WalletSigner],
        payment_method: Optional[str] = None,
    ) -> PurchaseOutcome:
        email = normalize_email(buyer.email)
        if not email or not is_valid_email(email):
            return PurchaseOutcome(
                status="validation_failed",
                notices=[Notice(title="Email required", description="Please enter a valid email address", variant="destructive")],
            )

        wallet_address = (buyer.wallet_address or (wallet.address if wallet else "") or "").lower()
        if not wallet_address:
            return PurchaseOutcome(
                status="validation_failed",
                notices=[Notice(title="Wallet not connected", description="Please connect your wallet to purchase a ticket.", variant="destructive")],
            )

        now = self.now() if self.now else None
        if is_registration_closed(event, now):
            return PurchaseOutcome(
                status="registration_closed",
                notices=[Notice(title="Registration closed", description="Registration for this event has closed.", variant="destructive")],
            )

        if event.has_allow_list:
            gate = await AllowListGate.check(db, event, wallet_address, email)
            if not gate.allowed:
                status = gate.status if gate.status != "error" else "failed"
                return PurchaseOutcome(status=status, notices=[gate.notice] if gate.notice else [])

        if payment_method and event.payment_methods and payment_method not in event.payment_methods:
            return PurchaseOutcome(
                status="validation_failed",
                notices=[Notice(title="Payment Method Unavailable", description="This payment method is not available for this event.", variant="destructive")],
            )

        # Fiat-only events are paid through Paystack whatever the lock charges
        if payment_method == FIAT or is_fiat_only(event):
            return await self._start_checkout(db, event, email, wallet_address)

        if is_free_in_db(event) or (not is_fiat_priced(event) and await self.is_free_on_chain(event)):
            return await self._claim_free(event, buyer, wallet, email, wallet_address)

        return await self._wallet_purchase(event, buyer, wallet, email)

    async def _start_checkout(self, db: AsyncSession, event: Event, email: str, wallet_address: str) -> PurchaseOutcome:
        if not has_fiat(event) or self.paystack is None:
            return PurchaseOutcome(
                status="validation_failed",
                notices=[Notice(title="Payment Configuration Error", description="Payment is not properly configured for this event.", variant="destructive")],
            )
        try:
            checkout = await self.paystack.initialize_checkout(db, event, email, wallet_address)
        except ValueError as e:
            return PurchaseOutcome(
                status="validation_failed",
                notices=[Notice(title="Payment Configuration Error", description=str(e), variant="destructive")],
            )
        except PaystackError as e:
            return PurchaseOutcome(
                status="failed",
                notices=[Notice(title="Payment Initialization Failed", description=str(e), variant="destructive")],
            )
        return PurchaseOutcome(status="checkout_started", checkout=checkout)

    async def _claim_free(
        self,
        event: Event,
        buyer: Buyer,
        wallet: Optional[WalletSigner],
        email: str,
        wallet_address: str,
    ) -> PurchaseOutcome:
        args = {
            "event_id": str(event.id),
            "lock_address": event.lock_address,
            "chain_id": event.chain_id,
            "recipient": wallet_address,
            "user_email": email,
        }

        async def fallback(_args):
            return await self._wallet_purchase(event, buyer, wallet, email)

        gasless = GaslessFallback(self.functions, buyer.access_token)
        attempt = await gasless.attempt("gasless-purchase", args, fallback, enabled=self.gasless_enabled)

        if attempt.used_fallback:
            outcome: PurchaseOutcome = attempt.fallback_result
            outcome.notices = list(attempt.notices) + list(outcome.notices)
            return outcome

        response = attempt.response
        if not response.get("ok"):
            error = response.get("error")
            return PurchaseOutcome(
                status="failed",
                error_code=error,
                gasless=True,
                notices=[Notice(title="Gasless Purchase Failed", description=gasless_error_message(error), variant="destructive")],
            )

        tx_hash = response.get("purchase_tx_hash")
        explorer_url = await self._explorer_url(event.chain_id, tx_hash)

        if response.get("already_claimed"):
            recovered = bool(response.get("recovered"))
            notice = (
                Notice(title="Ticket Recovered!", description="Your ticket record has been recovered. You already own this ticket on-chain.")
                if recovered
                else Notice(title="Already Claimed", description="You have already claimed a ticket for this event.")
            )
            return PurchaseOutcome(
                status="recovered" if recovered else "already_claimed",
                transaction_hash=tx_hash,
                explorer_url=explorer_url,
                gasless=True,
                notices=[notice],
            )

        warnings: List[str] = []
        if response.get("db_sync_status") == "partial":
            warnings.append(PARTIAL_SYNC_WARNING)
        remaining = (response.get("limits") or {}).get("remaining_today")

        logger.info(f"Gasless ticket claimed for event {event.id}: {tx_hash}")
        return PurchaseOutcome(
            status="success",
            transaction_hash=tx_hash,
            explorer_url=explorer_url,
            gasless=True,
            remaining_gasless_today=remaining,
            warnings=warnings,
            notices=[Notice(title="Ticket Claimed!", description="Your free ticket has been issued. Gas sponsored by TeeRex!")],
        )

    async def _wallet_purchase(
        self,
        event: Event,
        buyer: Buyer,
        wallet: Optional[WalletSigner],
        email: str,
    ) -> PurchaseOutcome:
        if wallet is None:
            return PurchaseOutcome(
                status="validation_failed",
                notices=[Notice(title="Wallet not connected", description="Please connect your wallet to purchase a ticket.", variant="destructive")],
            )

        result = await wallet.purchase_key(event.lock_address, event.price, event.currency, event.chain_id)

        if result.requires_signature:
            return PurchaseOutcome(
                status="wallet_signature_required",
                unsigned_transaction={"calls": result.unsigned_transactions},
                notices=[Notice(title="Confirm in your wallet", description="Approve the ticket purchase in your wallet to continue.", variant="info")],
            )

        if not result.success or not result.transaction_hash:
            return PurchaseOutcome(
                status="failed",
                notices=[Notice(title="Purchase Failed", description=result.error or "Failed to purchase ticket.", variant="destructive")],
            )

        return await self.complete_wallet_purchase(event, buyer, result.transaction_hash, email=email)

    async def complete_wallet_purchase(
        self,
        event: Event,
        buyer: Buyer,
        tx_hash: str,
        email: Optional[str] = None,
    ) -> PurchaseOutcome:
        """Record a key bought from the buyer's wallet and send the ticket email"""
        email = normalize_email(email or buyer.email) or None
        owner = (buyer.wallet_address or "").lower()
        warnings: List[str] = []

        try:
            registration = await self.functions.invoke(
                "register-ticket",
                {
                    "event_id": str(event.id),
                    "owner_wallet": owner,
                    "grant_tx_hash": tx_hash,
                    "user_email": email,
                },
                buyer.access_token,
            )
            if not succeeded(registration):
                logger.error(f"Failed to store ticket record for {tx_hash}: {registration.get('error')}")
                warnings.append(REGISTRATION_WARNING)
        except FunctionsError as e:
            logger.error(f"Failed to store ticket record for {tx_hash}: {e}")
            warnings.append(REGISTRATION_WARNING)

        if email:
            try:
                self.dispatch_ticket_email(
                    {
                        "event_id": str(event.id),
                        "user_email": email,
                        "wallet_address": owner,
                        "txn_hash": tx_hash,
                        "chain_id": event.chain_id,
                    },
                    buyer.access_token,
                )
            except Exception as e:
                logger.warning(f"[TICKET EMAIL] Failed to queue ticket email: {e}")
                warnings.append(EMAIL_WARNING)

        explorer_url = await self._explorer_url(event.chain_id, tx_hash)
        logger.info(f"Ticket purchased for event {event.id} by {owner}: {tx_hash}")
        return PurchaseOutcome(
            status="success",
            transaction_hash=tx_hash,
            explorer_url=explorer_url,
            warnings=warnings,
            notices=[Notice(title="Purchase Successful!", description=f"You've successfully purchased a ticket for {event.title}.")],
        )
