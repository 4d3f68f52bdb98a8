"""Ticket purchase routes"""
import json
import logging
from typing import Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.context import AppServices, get_services
from services.event_management.services.event_service import EventService
from services.ticket_purchase.models.purchase import (
    AwaitIssuanceRequest,
    Buyer,
    ConfirmPurchaseRequest,
    ProcessingResult,
    PurchaseOutcome,
    PurchaseRequest,
    TransactionStatusResponse,
    WebhookAck,
)
from services.ticket_purchase.services.reconciliation_poller import (
    TicketProcessingPoller,
    functions_status_fetcher,
)
from services.ticket_purchase.services.transaction_status_service import TransactionStatusService
from services.ticket_purchase.services.wallet import BrowserWallet
from shared.auth.dependencies import get_current_user
from shared.database.connection import get_db
from shared.utils.rate_limiter import RATE_LIMITS, limiter

logger = logging.getLogger(__name__)

router = APIRouter()


async def _load_event(db: AsyncSession, event_id: UUID):
    try:
        return await EventService.require_event(db, event_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/events/{event_id}", response_model=PurchaseOutcome)
@limiter.limit(RATE_LIMITS["purchase"])
async def purchase_ticket(
    request: Request,  # required by the rate limiter
    event_id: UUID,
    purchase_request: PurchaseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user),
    services: AppServices = Depends(get_services),
):
    """
    Buy (or claim) a ticket for an event.

    Validation failures, closed registration and gating decisions come
    back as the outcome status rather than HTTP errors. A browser wallet
    purchase returns `wallet_signature_required` with the calls to sign;
    the client then reports the hash to `/confirm`.
    """
    event = await _load_event(db, event_id)

    wallet = None
    if purchase_request.wallet_address:
        wallet = BrowserWallet(purchase_request.wallet_address, services.lock_client)

    buyer = Buyer(
        email=purchase_request.email,
        wallet_address=purchase_request.wallet_address,
        access_token=current_user["access_token"],
        user_id=current_user["user_id"],
    )
    outcome = await services.purchases.handle_purchase(
        db, event, buyer, wallet, payment_method=purchase_request.payment_method
    )
    logger.info(f"Purchase for event {event_id} by {current_user['user_id']}: {outcome.status}")
    return outcome


@router.post("/events/{event_id}/confirm", response_model=PurchaseOutcome)
@limiter.limit(RATE_LIMITS["purchase"])
async def confirm_wallet_purchase(
    request: Request,
    event_id: UUID,
    confirm_request: ConfirmPurchaseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user),
    services: AppServices = Depends(get_services),
):
    """Record a key the user's wallet bought on-chain and email the ticket"""
    event = await _load_event(db, event_id)
    buyer = Buyer(
        email=confirm_request.email,
        wallet_address=confirm_request.wallet_address,
        access_token=current_user["access_token"],
        user_id=current_user["user_id"],
    )
    return await services.purchases.complete_wallet_purchase(event, buyer, confirm_request.tx_hash)


@router.post("/paystack/webhook", response_model=WebhookAck)
@limiter.limit(RATE_LIMITS["webhook"])
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
):
    """Paystack charge notifications, authenticated by HMAC signature"""
    raw_body = await request.body()

    if not services.paystack.verify_signature(raw_body, x_paystack_signature):
        logger.warning("Rejected Paystack webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    try:
        return await services.paystack.apply_webhook(db, payload)
    except Exception as e:
        logger.error(f"Error processing Paystack webhook: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error processing webhook",
        )


@router.get("/transactions/{reference}/status", response_model=TransactionStatusResponse)
@limiter.limit(RATE_LIMITS["status"])
async def get_transaction_status(
    request: Request,
    reference: str,
    db: AsyncSession = Depends(get_db),
):
    """Payment and issuance progress for a Paystack reference"""
    return await TransactionStatusService.get_status(db, reference)


@router.post("/transactions/{reference}/await", response_model=ProcessingResult)
@limiter.limit(RATE_LIMITS["status"])
async def await_ticket_issuance(
    request: Request,
    reference: str,
    await_request: Optional[AwaitIssuanceRequest] = None,
    current_user: Dict = Depends(get_current_user),
    services: AppServices = Depends(get_services),
):
    """Block until the key for `reference` is issued, fails, or polling times out"""
    poller = TicketProcessingPoller(
        functions_status_fetcher(services.functions),
        networks=services.networks,
        interval=settings.TICKET_POLL_INTERVAL_SECONDS,
        max_attempts=settings.TICKET_POLL_MAX_ATTEMPTS,
        initial_delay=settings.TICKET_POLL_INITIAL_DELAY_SECONDS,
    )
    chain_id = await_request.chain_id if await_request else None
    return await poller.run(reference, chain_id=chain_id)
