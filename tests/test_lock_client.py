import pytest

from shared.chain.lock_client import ChainReadError, LockClient
from tests.conftest import BASE_SEPOLIA, LOCK_ADDRESS


async def test_key_price_reports_unavailable_network_config(unreachable_networks):
    client = LockClient(unreachable_networks)

    with pytest.raises(ChainReadError, match="Network configuration unavailable"):
        await client.get_key_price(LOCK_ADDRESS, BASE_SEPOLIA)


async def test_pricing_reports_unavailable_network_config(unreachable_networks):
    client = LockClient(unreachable_networks)

    with pytest.raises(ChainReadError):
        await client.get_pricing(LOCK_ADDRESS, BASE_SEPOLIA)


async def test_native_decimals_report_unavailable_network_config(unreachable_networks):
    client = LockClient(unreachable_networks)

    with pytest.raises(ChainReadError):
        await client.get_token_decimals(None, BASE_SEPOLIA)
