"""Detect drift between stored event pricing and the lock contract"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from services.event_management.models.event import (
    LockPricingState,
    PricingSnapshot,
    PricingSyncResult,
)
from shared.cache.query_cache import QueryCache
from shared.chain.lock_client import ChainReadError, LockClient, OnChainPricing
from shared.chain.network_config import NetworkNotConfigured
from shared.database.models import Event
from shared.functions.client import BackendFunctionsClient, FunctionsError

logger = logging.getLogger(__name__)

# Stored currencies with no comparable on-chain price
UNCHECKED_CURRENCIES = ("FREE", "NGN")


class PricingSyncForbidden(Exception):
    """Caller is not allowed to sync this event (not creator or lock manager)"""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class PricingSyncError(Exception):
    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


def _as_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def classify_mismatch(on_chain: OnChainPricing, db_price, db_currency: Optional[str]) -> str:
    stored_price = _as_decimal(db_price)
    price_differs = stored_price is not None and stored_price != on_chain.price
    currency_differs = bool(db_currency) and on_chain.currency != db_currency

    if price_differs and currency_differs:
        return "both"
    if price_differs:
        return "price"
    if currency_differs:
        return "currency"
    return "none"


class LockStateService:
    """
    Compares (price, currency) stored on an event with what its lock
    charges. On-chain reads are cached per
    (lock_address, chain_id, db_price, db_currency).
    """

    CACHE_PREFIX = "lock-state"

    def __init__(
        self,
        lock_client: LockClient,
        cache: QueryCache,
        functions: Optional[BackendFunctionsClient] = None,
    ):
        self.lock_client = lock_client
        self.cache = cache
        self.functions = functions

    @staticmethod
    def should_query(lock_address: Optional[str], chain_id: Optional[int], db_currency: Optional[str], enabled: bool = True) -> bool:
        return bool(
            enabled
            and lock_address
            and lock_address != "Unknown"
            and chain_id
            and db_currency not in UNCHECKED_CURRENCIES
        )

    def cache_key(self, lock_address: str, chain_id: int, db_price, db_currency: Optional[str]):
        price = _as_decimal(db_price)
        return (
            self.CACHE_PREFIX,
            lock_address.lower(),
            chain_id,
            str(price.normalize()) if price is not None else None,
            db_currency,
        )

    async def get_lock_state(
        self,
        lock_address: Optional[str],
        chain_id: Optional[int],
        db_price,
        db_currency: Optional[str],
        enabled: bool = True,
    ) -> LockPricingState:
        if not self.should_query(lock_address, chain_id, db_currency, enabled):
            return LockPricingState()

        key = self.cache_key(lock_address, chain_id, db_price, db_currency)
        try:
            on_chain = await self.cache.fetch(
                key, lambda: self.lock_client.get_pricing(lock_address, chain_id)
            )
        except (ChainReadError, NetworkNotConfigured) as e:
            # Never report a mismatch we could not verify
            logger.warning(f"On-chain pricing unavailable for {lock_address} on {chain_id}: {e}")
            return LockPricingState(checked=False, error=str(e))

        mismatch_type = classify_mismatch(on_chain, db_price, db_currency)
        return LockPricingState(
            on_chain_price=on_chain.price,
            on_chain_currency=on_chain.currency,
            on_chain_token_address=on_chain.token_address,
            has_mismatch=mismatch_type != "none",
            mismatch_type=mismatch_type,
            checked=True,
        )

    def invalidate_lock(self, lock_address: str) -> int:
        lock = lock_address.lower()
        return self.cache.invalidate(
            lambda key: isinstance(key, tuple) and key[:2] == (self.CACHE_PREFIX, lock)
        )

    async def sync_from_chain(self, event: Event, access_token: str) -> PricingSyncResult:
        """
        Overwrite the event's price and currency with the lock's values.

        The backend re-reads the chain and checks the caller manages the
        lock; only price and currency change.
        """
        try:
            data = await self.functions.invoke(
                "sync-event-pricing-from-chain", {"event_id": str(event.id)}, access_token
            )
        except FunctionsError as e:
            logger.error(f"Pricing sync for event {event.id} failed: {e}")
            raise PricingSyncError("network_error") from e

        if not data.get("ok"):
            code = data.get("error") or "internal_server_error"
            if code.startswith("unauthorized"):
                raise PricingSyncForbidden(code)
            raise PricingSyncError(code)

        self.invalidate_lock(event.lock_address)

        previous = data.get("previousPricing") or {}
        new = data.get("newPricing") or {}
        logger.info(
            f"Synced pricing for event {event.id}: "
            f"{previous.get('price')} {previous.get('currency')} -> {new.get('price')} {new.get('currency')}"
        )
        return PricingSyncResult(
            event_id=str(event.id),
            previous_pricing=PricingSnapshot(price=_as_decimal(previous.get("price")), currency=previous.get("currency")),
            new_pricing=PricingSnapshot(price=_as_decimal(new.get("price")), currency=new.get("currency")),
        )
