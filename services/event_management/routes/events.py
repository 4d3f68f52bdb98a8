"""Event routes: pricing drift, allow-list requests and waitlists"""
import logging
from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from web3 import AsyncWeb3

from app.core.context import AppServices, get_services
from services.event_management.models.event import (
    AllowListRequestBody,
    GateResult,
    LockPricingState,
    PricingSyncResult,
    WaitlistCount,
    WaitlistJoinRequest,
    WaitlistJoinResult,
    WaitlistNotifyRequest,
    WaitlistNotifyResult,
)
from services.event_management.services.event_service import EventService
from services.event_management.services.gating_service import (
    AllowListGate,
    WaitlistNotifyError,
    WaitlistNotifyForbidden,
)
from services.event_management.services.lock_state_service import (
    PricingSyncError,
    PricingSyncForbidden,
)
from shared.auth.dependencies import get_current_user
from shared.database.connection import get_db
from shared.utils.email import is_valid_email
from shared.utils.rate_limiter import RATE_LIMITS, limiter

logger = logging.getLogger(__name__)

router = APIRouter()

# sync-event-pricing-from-chain codes that are the caller's fault
SYNC_CLIENT_ERRORS = {
    "missing_event_id": status.HTTP_400_BAD_REQUEST,
    "event_not_found": status.HTTP_404_NOT_FOUND,
    "chain_not_supported": status.HTTP_400_BAD_REQUEST,
    "no_wallet_found": status.HTTP_400_BAD_REQUEST,
}


async def _load_event(db: AsyncSession, event_id: UUID):
    try:
        return await EventService.require_event(db, event_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/{event_id}/lock-state", response_model=LockPricingState)
@limiter.limit(RATE_LIMITS["public"])
async def get_lock_state(
    request: Request,
    event_id: UUID,
    enabled: bool = Query(True, description="Set false to skip the on-chain read"),
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
):
    """Compare stored price/currency with what the event's lock charges"""
    event = await _load_event(db, event_id)
    return await services.lock_state.get_lock_state(
        event.lock_address, event.chain_id, event.price, event.currency, enabled=enabled
    )


@router.post("/{event_id}/sync-pricing", response_model=PricingSyncResult)
@limiter.limit(RATE_LIMITS["organizer"])
async def sync_pricing(
    request: Request,
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user),
    services: AppServices = Depends(get_services),
):
    """Overwrite the event's price and currency with the lock's values (lock managers only)"""
    event = await _load_event(db, event_id)
    try:
        return await services.lock_state.sync_from_chain(event, current_user["access_token"])
    except PricingSyncForbidden as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.code)
    except PricingSyncError as e:
        code = SYNC_CLIENT_ERRORS.get(e.code, status.HTTP_502_BAD_GATEWAY)
        raise HTTPException(status_code=code, detail=e.code)


@router.post("/{event_id}/allow-list/requests", response_model=GateResult)
@limiter.limit(RATE_LIMITS["default"])
async def request_allow_list_access(
    request: Request,
    event_id: UUID,
    body: AllowListRequestBody,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user),
):
    """Ask the organizer of a private event to approve a wallet"""
    if not AsyncWeb3.is_address(body.wallet_address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid wallet address",
        )
    event = await _load_event(db, event_id)
    if not event.has_allow_list:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This event does not use an allow list",
        )
    if not is_valid_email(body.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please enter a valid email address",
        )
    logger.info(f"Allow-list request for event {event.id} from {current_user['user_id']}")
    return await AllowListGate.request_approval(db, event.id, body.wallet_address, body.email)


@router.post("/{event_id}/waitlist", response_model=WaitlistJoinResult)
@limiter.limit(RATE_LIMITS["default"])
async def join_waitlist(
    request: Request,
    event_id: UUID,
    body: WaitlistJoinRequest,
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
):
    event = await _load_event(db, event_id)
    if not event.allow_waitlist:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Waitlist is not enabled for this event",
        )
    if not is_valid_email(body.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please enter a valid email address",
        )
    try:
        return await services.waitlist.join(db, event, body.email, body.wallet_address)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{event_id}/waitlist/count", response_model=WaitlistCount)
@limiter.limit(RATE_LIMITS["public"])
async def get_waitlist_count(
    request: Request,
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
):
    count = await services.waitlist.count(db, event_id)
    return WaitlistCount(event_id=str(event_id), count=count)


@router.post("/{event_id}/waitlist/notify", response_model=WaitlistNotifyResult)
@limiter.limit(RATE_LIMITS["organizer"])
async def notify_waitlist(
    request: Request,
    event_id: UUID,
    body: WaitlistNotifyRequest,
    current_user: Dict = Depends(get_current_user),
    services: AppServices = Depends(get_services),
):
    """Email everyone still waiting that tickets are available (organizer only)"""
    try:
        return await services.waitlist.notify(
            event_id,
            current_user["access_token"],
            event_url=body.event_url,
            target_title=body.target_title,
            target_date=body.target_date,
        )
    except WaitlistNotifyForbidden as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except WaitlistNotifyError as e:
        logger.error(f"Waitlist notification for {event_id} failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
