import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from shared.chain.network_config import ChainNetwork, NetworkConfigService
from shared.database.models import Event

BASE_SEPOLIA = 84532
LOCK_ADDRESS = "0x1111111111111111111111111111111111111111"
USDC_ADDRESS = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
BUYER_WALLET = "0xAbCdEf0000000000000000000000000000000001"


def make_event(**overrides) -> Event:
    fields = dict(
        id=uuid.uuid4(),
        creator_id="did:privy:organizer",
        title="Web3 Lagos Meetup",
        lock_address=LOCK_ADDRESS,
        chain_id=BASE_SEPOLIA,
        price=Decimal("0"),
        currency="FREE",
        ngn_price=None,
        payment_methods=["free"],
        has_allow_list=False,
        allow_waitlist=False,
        date=None,
        starts_at=None,
        registration_cutoff=None,
    )
    fields.update(overrides)
    return Event(**fields)


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def base_sepolia() -> ChainNetwork:
    return ChainNetwork(
        chain_id=BASE_SEPOLIA,
        chain_name="Base Sepolia",
        native_currency_symbol="ETH",
        native_currency_decimals=18,
        rpc_url="https://sepolia.base.org",
        block_explorer_url="https://sepolia.basescan.org/",
        usdc_token_address=USDC_ADDRESS,
    )


@pytest.fixture
def networks(base_sepolia) -> NetworkConfigService:
    async def load():
        return [base_sepolia]
    return NetworkConfigService(loader=load)


@pytest.fixture
def functions():
    """Backend functions client; set `functions.invoke.side_effect` per test"""
    client = MagicMock()
    client.invoke = AsyncMock(return_value={"ok": True})
    return client


@pytest.fixture
def db():
    session = MagicMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.add = MagicMock()
    return session


def scalar_result(value):
    """Stand-in for the Result of `db.execute(select(...))`"""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar_one.return_value = value
    return result


async def no_sleep(_delay):
    return None


@pytest.fixture
def unreachable_networks() -> NetworkConfigService:
    async def load():
        raise OperationalError("SELECT network_configs", {}, ConnectionRefusedError("database is down"))
    return NetworkConfigService(loader=load)
