"""Pre-purchase gates: private-event allow lists and event waitlists"""
import logging
from datetime import datetime
from typing import Callable, Dict, Optional
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.event_management.models.event import (
    GateResult,
    Notice,
    WaitlistJoinResult,
    WaitlistNotifyResult,
)
from shared.database.errors import is_unique_violation
from shared.database.models import AllowListEntry, AllowListRequest, Event, WaitlistEntry
from shared.functions.client import BackendFunctionsClient, FunctionsError
from shared.utils.email import normalize_email

logger = logging.getLogger(__name__)

ALLOW_LIST_LOOKUP_FAILED = "Failed to verify allow list access"
MAX_NOTIFY_PAGES = 100


class AllowListGate:
    """
    A wallet may buy a ticket for a private event only once it is on the
    allow list. Otherwise an approval request is recorded for the
    organizer and the purchase stops here.
    """

    @staticmethod
    async def check(db: AsyncSession, event: Event, wallet_address: str, email: str) -> GateResult:
        wallet = wallet_address.lower()

        try:
            result = await db.execute(
                select(AllowListEntry.id).where(
                    AllowListEntry.event_id == event.id,
                    AllowListEntry.wallet_address == wallet,
                )
            )
            entry = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error checking allow list for event {event.id}: {e}")
            return GateResult(
                status="error",
                notice=Notice(title="Error", description=ALLOW_LIST_LOOKUP_FAILED, variant="destructive"),
            )

        if entry is not None:
            return GateResult(status="allowed")

        return await AllowListGate.request_approval(db, event.id, wallet, email)

    @staticmethod
    async def request_approval(db: AsyncSession, event_id: UUID, wallet_address: str, email: str) -> GateResult:
        """Record an approval request; a repeated request refreshes the email"""
        wallet = wallet_address.lower()
        try:
            db.add(AllowListRequest(event_id=event_id, wallet_address=wallet, user_email=email))
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            if not is_unique_violation(e):
                logger.error(f"Error requesting allow list approval: {e}")
                return AllowListGate._request_failed()
            return await AllowListGate._refresh_pending_request(db, event_id, wallet, email)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Error requesting allow list approval: {e}")
            return AllowListGate._request_failed()

        logger.info(f"Allow list approval requested for {wallet} on event {event_id}")
        return GateResult(
            status="pending_approval",
            notice=Notice(
                title="Approval requested",
                description=(
                    "This is a private event. You are not on the allow list yet. "
                    "Your request has been sent to the organizer for review."
                ),
            ),
        )

    @staticmethod
    async def _refresh_pending_request(db: AsyncSession, event_id: UUID, wallet: str, email: str) -> GateResult:
        try:
            await db.execute(
                update(AllowListRequest)
                .where(
                    AllowListRequest.event_id == event_id,
                    AllowListRequest.wallet_address == wallet,
                    AllowListRequest.status == "pending",
                )
                .values(user_email=email)
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            # The request exists; a stale email is not worth failing over
            logger.warning(f"Could not refresh allow list request email for {wallet}: {e}")

        return GateResult(
            status="already_requested",
            notice=Notice(
                title="Request already sent",
                description=(
                    "You have already requested approval for this wallet address. "
                    "Please wait for the organizer to review."
                ),
            ),
        )

    @staticmethod
    def _request_failed() -> GateResult:
        return GateResult(
            status="error",
            notice=Notice(
                title="Request failed",
                description="Failed to request approval for this private event.",
                variant="destructive",
            ),
        )


class WaitlistNotifyForbidden(Exception):
    pass


class WaitlistNotifyError(Exception):
    pass


class WaitlistService:
    """
    Waitlist membership for sold-out events.

    `dispatch_confirmation(event_id)` queues the confirmation email batch;
    it must not raise into the caller's flow.
    """

    def __init__(
        self,
        functions: Optional[BackendFunctionsClient] = None,
        dispatch_confirmation: Optional[Callable[[str], None]] = None,
    ):
        self.functions = functions
        self.dispatch_confirmation = dispatch_confirmation or _enqueue_waitlist_confirmations

    def _trigger_confirmation(self, event_id) -> None:
        try:
            self.dispatch_confirmation(str(event_id))
        except Exception as e:
            logger.warning(f"[WAITLIST] Failed to trigger confirmation email: {e}")

    async def join(
        self,
        db: AsyncSession,
        event: Event,
        email: str,
        wallet_address: Optional[str] = None,
    ) -> WaitlistJoinResult:
        normalized = normalize_email(email)
        if not normalized:
            raise ValueError("Please enter a valid email address")

        wallet = wallet_address.lower() if wallet_address else None

        try:
            db.add(WaitlistEntry(event_id=event.id, user_email=normalized, wallet_address=wallet))
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            if not is_unique_violation(e):
                raise
            await self._confirm_if_unsent(db, event.id, normalized)
            return WaitlistJoinResult(
                status="already_joined",
                email=normalized,
                notice=Notice(
                    title="Already on waitlist",
                    description="You're already on the waitlist for this event!",
                ),
            )

        logger.info(f"Waitlist entry created for event {event.id}")
        self._trigger_confirmation(event.id)
        return WaitlistJoinResult(
            status="joined",
            email=normalized,
            notice=Notice(
                title="Joined waitlist!",
                description="We'll notify you when tickets become available.",
            ),
        )

    async def _confirm_if_unsent(self, db: AsyncSession, event_id: UUID, email: str) -> None:
        try:
            result = await db.execute(
                select(WaitlistEntry.confirmation_sent).where(
                    WaitlistEntry.event_id == event_id,
                    WaitlistEntry.user_email == email,
                )
            )
            confirmation_sent = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.warning(f"[WAITLIST] Could not read confirmation state: {e}")
            return

        if confirmation_sent is False:
            self._trigger_confirmation(event_id)

    @staticmethod
    async def count(db: AsyncSession, event_id: UUID) -> int:
        """Entries still waiting for a notification"""
        result = await db.execute(
            select(func.count(WaitlistEntry.id)).where(
                WaitlistEntry.event_id == event_id,
                WaitlistEntry.notified.is_(False),
            )
        )
        return result.scalar_one()

    async def notify(
        self,
        event_id: UUID,
        access_token: str,
        event_url: Optional[str] = None,
        target_title: Optional[str] = None,
        target_date: Optional[datetime] = None,
    ) -> WaitlistNotifyResult:
        """Page through `notify-waitlist` until the backend reports no more entries"""
        if not access_token:
            raise WaitlistNotifyForbidden("Authentication required to notify waitlist")

        notified = 0
        failed = 0
        page = 1
        for _ in range(MAX_NOTIFY_PAGES):
            body: Dict = {
                "event_id": str(event_id),
                "page": page,
                "event_url": event_url,
                "target_title": target_title,
                "target_date": target_date.isoformat() if target_date else None,
            }
            try:
                data = await self.functions.invoke("notify-waitlist", body, access_token)
            except FunctionsError as e:
                raise WaitlistNotifyError(str(e)) from e
            if not data.get("ok"):
                error = data.get("error") or "Failed to notify waitlist"
                if error.startswith("unauthorized") or error in ("forbidden", "not_event_creator"):
                    raise WaitlistNotifyForbidden(error)
                raise WaitlistNotifyError(error)

            notified += data.get("notified") or 0
            failed += data.get("failed") or 0
            if not data.get("has_more"):
                break
            page = data.get("next_page") or page + 1
        else:
            logger.warning(f"Waitlist notification for {event_id} stopped after {MAX_NOTIFY_PAGES} pages")

        return WaitlistNotifyResult(
            notified=notified,
            failed=failed,
            notice=Notice(
                title="Notifications sent",
                description=f"Notified {notified}. Failed {failed}.",
                variant="destructive" if failed > 0 else "default",
            ),
        )


def _enqueue_waitlist_confirmations(event_id: str) -> None:
    from services.event_management.tasks.waitlist_tasks import send_waitlist_confirmations_task
    send_waitlist_confirmations_task.delay(event_id)
