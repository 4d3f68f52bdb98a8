"""Event lookup and the business rules attached to an event"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
from datetime import datetime, timezone
from uuid import UUID
from shared.database.models import Event

FREE = "free"
CRYPTO = "crypto"
FIAT = "fiat"

# Gasless error codes returned by the backend -> message shown to the buyer
GASLESS_ERROR_MESSAGES = {
    "recipient_wallet_not_authorized": "Your wallet is not authorized for this action.",
    "invalid_email_format": "Please provide a valid email address.",
    "chain_not_supported": "This blockchain network is not supported.",
    "network_not_fully_configured": "Network configuration is incomplete.",
    "event_not_found": "Event not found.",
    "only_free_tickets_supported": "Only free tickets can use gasless purchase.",
    "lock_address_mismatch": "Event configuration mismatch.",
    "chain_id_mismatch": "Chain ID mismatch.",
    "limit_exceeded": "Daily gasless limit exceeded. Please use your wallet instead.",
    "max_keys_reached": "You have reached the maximum number of tickets allowed for this event.",
    "ticket_already_claimed": "You have already claimed a ticket for this event.",
}


def gasless_error_message(error_code: Optional[str]) -> str:
    """Human message for a gasless error code; unknown codes are shown as-is"""
    if not error_code:
        return "Gasless purchase failed."
    return GASLESS_ERROR_MESSAGES.get(error_code, error_code)


def has_method(event: Optional[Event], method: str) -> bool:
    return bool(event is not None and event.payment_methods and method in event.payment_methods)


def is_free_event(event: Optional[Event]) -> bool:
    return has_method(event, FREE)


def has_crypto(event: Optional[Event]) -> bool:
    return has_method(event, CRYPTO)


def has_fiat(event: Optional[Event]) -> bool:
    return has_method(event, FIAT)


def is_fiat_only(event: Optional[Event]) -> bool:
    """Fiat is the only way in: no crypto and no free method"""
    return has_fiat(event) and not has_crypto(event) and not is_free_event(event)


def is_fiat_priced(event: Event) -> bool:
    """Priced in NGN; the lock of such an event is priced 0 on-chain"""
    return (event.currency or "").upper() == "NGN"


def is_free_in_db(event: Event) -> bool:
    """Free according to the stored event (currency FREE or the free payment method)"""
    return (event.currency or "").upper() == "FREE" or is_free_event(event)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def is_registration_closed(event: Event, now: Optional[datetime] = None) -> bool:
    """
    Registration closes at `registration_cutoff`, else at `starts_at`.

    Legacy events only carry a day; those close once that day is over.
    """
    now = _as_utc(now or datetime.now(timezone.utc))

    if event.registration_cutoff:
        return now > _as_utc(event.registration_cutoff)
    if event.starts_at:
        return now > _as_utc(event.starts_at)
    if event.date:
        return event.date < now.date()
    return False


class EventService:
    """Read access to events"""

    @staticmethod
    async def get_event(db: AsyncSession, event_id: UUID) -> Optional[Event]:
        result = await db.execute(select(Event).where(Event.id == event_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def require_event(db: AsyncSession, event_id: UUID) -> Event:
        event = await EventService.get_event(db, event_id)
        if event is None:
            raise ValueError("Event not found")
        return event
