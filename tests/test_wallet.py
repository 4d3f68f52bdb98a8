from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.ticket_purchase.services.wallet import (
    BrowserWallet,
    LocalAccountWallet,
    build_purchase_calls,
)
from shared.chain.abi import ZERO_ADDRESS
from shared.chain.lock_client import ChainReadError, OnChainPricing
from tests.conftest import BASE_SEPOLIA, BUYER_WALLET, LOCK_ADDRESS, USDC_ADDRESS

ETH_PRICING = OnChainPricing(
    price=Decimal("0.01"), currency="ETH", token_address=ZERO_ADDRESS,
    raw_price=10_000_000_000_000_000, decimals=18,
)
USDC_PRICING = OnChainPricing(
    price=Decimal("5"), currency="USDC", token_address=USDC_ADDRESS,
    raw_price=5_000_000, decimals=6,
)


def contract(address):
    mock = MagicMock()
    mock.address = address
    mock.encode_abi.side_effect = lambda name, args: f"0x{name}"
    return mock


class FakeEth:
    def __init__(self, status=1):
        self.status = status
        self.sent = []

    async def get_transaction_count(self, address, block):
        return 7

    async def estimate_gas(self, tx):
        return 90_000

    async def _gas_price(self):
        return 1_000_000_000

    @property
    def gas_price(self):
        return self._gas_price()

    async def send_raw_transaction(self, raw):
        self.sent.append(raw)
        return bytes([len(self.sent)]) * 32

    async def wait_for_transaction_receipt(self, tx_hash, timeout):
        return {"status": self.status}


@pytest.fixture
def lock_client():
    client = MagicMock()
    client.lock_contract = AsyncMock(return_value=contract(LOCK_ADDRESS))
    client.token_contract = AsyncMock(return_value=contract(USDC_ADDRESS))
    client.get_pricing = AsyncMock(return_value=ETH_PRICING)
    return client


async def test_native_purchase_sends_value(lock_client):
    calls = await build_purchase_calls(lock_client, LOCK_ADDRESS, BASE_SEPOLIA, BUYER_WALLET, ETH_PRICING)

    assert len(calls) == 1
    assert calls[0]["to"] == LOCK_ADDRESS
    assert calls[0]["value"] == ETH_PRICING.raw_price
    assert calls[0]["data"] == "0xpurchase"
    lock_client.token_contract.assert_not_awaited()


async def test_erc20_purchase_approves_first(lock_client):
    calls = await build_purchase_calls(lock_client, LOCK_ADDRESS, BASE_SEPOLIA, BUYER_WALLET, USDC_PRICING)

    assert [c["data"] for c in calls] == ["0xapprove", "0xpurchase"]
    assert calls[0]["to"] == USDC_ADDRESS
    assert all(c["value"] == 0 for c in calls)
    token = await lock_client.token_contract()
    token.encode_abi.assert_called_once_with("approve", args=[LOCK_ADDRESS, 5_000_000])


async def test_browser_wallet_returns_calls_to_sign(lock_client):
    wallet = BrowserWallet(BUYER_WALLET, lock_client)

    result = await wallet.purchase_key(LOCK_ADDRESS, Decimal("0.02"), "ETH", BASE_SEPOLIA)

    assert result.requires_signature
    assert result.unsigned_transactions[0]["value"] == ETH_PRICING.raw_price


async def test_browser_wallet_reports_chain_errors(lock_client):
    lock_client.get_pricing.side_effect = ChainReadError("rpc down")

    result = await BrowserWallet(BUYER_WALLET, lock_client).purchase_key(LOCK_ADDRESS, Decimal("0.01"), "ETH", BASE_SEPOLIA)

    assert not result.success
    assert not result.requires_signature
    assert result.error == "rpc down"


def local_wallet(lock_client, eth):
    account = MagicMock()
    account.address = BUYER_WALLET
    account.sign_transaction.side_effect = lambda tx: SimpleNamespace(raw_transaction=b"signed")
    lock_client.web3_for = AsyncMock(return_value=SimpleNamespace(eth=eth))
    return LocalAccountWallet(account, lock_client), account


async def test_local_account_signs_and_sends_every_call(lock_client):
    lock_client.get_pricing.return_value = USDC_PRICING
    eth = FakeEth()
    wallet, account = local_wallet(lock_client, eth)

    result = await wallet.purchase_key(LOCK_ADDRESS, Decimal("5"), "USDC", BASE_SEPOLIA)

    assert result.success
    assert len(eth.sent) == 2
    assert result.transaction_hash == "0x" + "02" * 32
    signed_tx = account.sign_transaction.call_args.args[0]
    assert signed_tx["nonce"] == 7
    assert signed_tx["gas"] == 90_000
    assert signed_tx["chainId"] == BASE_SEPOLIA


async def test_local_account_reverted_transaction(lock_client):
    wallet, _ = local_wallet(lock_client, FakeEth(status=0))

    result = await wallet.purchase_key(LOCK_ADDRESS, Decimal("0.01"), "ETH", BASE_SEPOLIA)

    assert not result.success
    assert "reverted" in result.error
