import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from services.event_management.services.gating_service import (
    AllowListGate,
    WaitlistNotifyError,
    WaitlistNotifyForbidden,
    WaitlistService,
)
from shared.database.errors import is_unique_violation
from tests.conftest import BUYER_WALLET, make_event, scalar_result


class FakePgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(sqlstate)
        self.sqlstate = sqlstate


def integrity_error(sqlstate="23505") -> IntegrityError:
    return IntegrityError("INSERT INTO ...", {}, FakePgError(sqlstate))


def test_unique_violation_detection():
    assert is_unique_violation(integrity_error())
    assert not is_unique_violation(integrity_error("23503"))
    assert not is_unique_violation(ValueError())

    wrapped = Exception("adapter")
    wrapped.__cause__ = FakePgError("23505")
    assert is_unique_violation(IntegrityError("INSERT", {}, wrapped))


async def test_wallet_on_allow_list_is_allowed(db):
    db.execute.return_value = scalar_result(uuid.uuid4())

    gate = await AllowListGate.check(db, make_event(has_allow_list=True), BUYER_WALLET, "ada@teerex.xyz")

    assert gate.allowed
    db.add.assert_not_called()


async def test_unknown_wallet_requests_approval(db):
    db.execute.return_value = scalar_result(None)

    gate = await AllowListGate.check(db, make_event(has_allow_list=True), BUYER_WALLET, "ada@teerex.xyz")

    assert gate.status == "pending_approval"
    request = db.add.call_args.args[0]
    assert request.wallet_address == BUYER_WALLET.lower()
    assert request.user_email == "ada@teerex.xyz"
    db.commit.assert_awaited_once()


async def test_repeated_request_refreshes_email(db):
    db.execute.side_effect = [scalar_result(None), MagicMock()]
    db.commit.side_effect = [integrity_error(), None]

    gate = await AllowListGate.check(db, make_event(has_allow_list=True), BUYER_WALLET, "new@teerex.xyz")

    assert gate.status == "already_requested"
    assert gate.notice.title == "Request already sent"
    db.rollback.assert_awaited_once()
    assert db.execute.await_count == 2


async def test_allow_list_lookup_failure(db):
    db.execute.side_effect = OperationalError("SELECT", {}, Exception("connection reset"))

    gate = await AllowListGate.check(db, make_event(has_allow_list=True), BUYER_WALLET, "ada@teerex.xyz")

    assert gate.status == "error"
    assert gate.notice.description == "Failed to verify allow list access"


async def test_other_integrity_errors_fail_the_request(db):
    db.commit.side_effect = integrity_error("23503")

    gate = await AllowListGate.request_approval(db, uuid.uuid4(), BUYER_WALLET, "ada@teerex.xyz")

    assert gate.status == "error"
    assert gate.notice.title == "Request failed"


@pytest.fixture
def dispatch():
    return MagicMock()


@pytest.fixture
def waitlist(functions, dispatch):
    return WaitlistService(functions, dispatch_confirmation=dispatch)


async def test_join_waitlist(waitlist, db, dispatch):
    event = make_event(allow_waitlist=True)

    result = await waitlist.join(db, event, " Ada@TeeRex.xyz", BUYER_WALLET)

    assert result.status == "joined"
    assert result.email == "ada@teerex.xyz"
    assert result.notice.title == "Joined waitlist!"
    entry = db.add.call_args.args[0]
    assert entry.user_email == "ada@teerex.xyz"
    assert entry.wallet_address == BUYER_WALLET.lower()
    dispatch.assert_called_once_with(str(event.id))


@pytest.mark.parametrize("confirmation_sent, dispatched", [(False, True), (True, False)])
async def test_rejoin_only_resends_missing_confirmation(waitlist, db, dispatch, confirmation_sent, dispatched):
    db.commit.side_effect = integrity_error()
    db.execute.return_value = scalar_result(confirmation_sent)

    result = await waitlist.join(db, make_event(), "ada@teerex.xyz")

    assert result.status == "already_joined"
    assert result.notice.description == "You're already on the waitlist for this event!"
    assert dispatch.called is dispatched


async def test_confirmation_failure_does_not_fail_join(waitlist, db, dispatch):
    dispatch.side_effect = ConnectionError("broker down")

    result = await waitlist.join(db, make_event(), "ada@teerex.xyz")

    assert result.status == "joined"


async def test_join_requires_email(waitlist, db):
    with pytest.raises(ValueError):
        await waitlist.join(db, make_event(), "   ")


async def test_count_unnotified(db):
    db.execute.return_value = scalar_result(7)

    assert await WaitlistService.count(db, uuid.uuid4()) == 7


async def test_notify_pages_until_done(waitlist, functions):
    functions.invoke.side_effect = [
        {"ok": True, "notified": 50, "failed": 1, "has_more": True, "next_page": 2},
        {"ok": True, "notified": 10, "failed": 0, "has_more": False},
    ]
    event_id = uuid.uuid4()

    result = await waitlist.notify(event_id, "privy-token", event_url="https://teerex.live/event/1")

    assert (result.notified, result.failed) == (60, 1)
    assert result.notice.description == "Notified 60. Failed 1."
    pages = [call.args[1]["page"] for call in functions.invoke.await_args_list]
    assert pages == [1, 2]
    assert functions.invoke.await_args_list[0].args[2] == "privy-token"


async def test_notify_authorization_error(waitlist, functions):
    functions.invoke.return_value = {"ok": False, "error": "unauthorized_not_creator"}

    with pytest.raises(WaitlistNotifyForbidden):
        await waitlist.notify(uuid.uuid4(), "token")


async def test_notify_backend_error(waitlist, functions):
    functions.invoke.return_value = {"ok": False, "error": "email_provider_down"}

    with pytest.raises(WaitlistNotifyError, match="email_provider_down"):
        await waitlist.notify(uuid.uuid4(), "token")
