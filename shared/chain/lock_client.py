"""Read-only access to Unlock lock contracts through web3.py"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from web3 import AsyncWeb3, AsyncHTTPProvider
from web3.exceptions import Web3Exception

from shared.chain.abi import ERC20_ABI, PUBLIC_LOCK_ABI, ZERO_ADDRESS
from shared.chain.network_config import NetworkConfigService

logger = logging.getLogger(__name__)

NATIVE_DECIMALS = 18

# Errors raised by the provider or by contract calls
RPC_ERRORS = (Web3Exception, ValueError, OSError, asyncio.TimeoutError)
# Errors raised while loading network configuration from the database
CONFIG_ERRORS = (SQLAlchemyError, OSError)


class ChainReadError(Exception):
    """RPC or contract call failed"""


@dataclass(frozen=True)
class OnChainPricing:
    price: Decimal
    currency: str
    token_address: str
    raw_price: int
    decimals: int


def to_decimal_amount(raw: int, decimals: int) -> Decimal:
    return Decimal(raw) / (Decimal(10) ** decimals)


class LockClient:
    def __init__(self, networks: NetworkConfigService, timeout: float = 15.0):
        self.networks = networks
        self.timeout = timeout
        self._clients: Dict[int, AsyncWeb3] = {}

    async def web3_for(self, chain_id: int) -> AsyncWeb3:
        w3 = self._clients.get(chain_id)
        if w3 is None:
            try:
                rpc_url = await self.networks.rpc_url(chain_id)
            except CONFIG_ERRORS as e:
                raise ChainReadError(f"Network configuration unavailable for chain {chain_id}: {e}") from e
            w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self.timeout}))
            self._clients[chain_id] = w3
        return w3

    async def lock_contract(self, lock_address: str, chain_id: int):
        w3 = await self.web3_for(chain_id)
        return w3.eth.contract(address=AsyncWeb3.to_checksum_address(lock_address), abi=PUBLIC_LOCK_ABI)

    async def token_contract(self, token_address: str, chain_id: int):
        w3 = await self.web3_for(chain_id)
        return w3.eth.contract(address=AsyncWeb3.to_checksum_address(token_address), abi=ERC20_ABI)

    async def get_key_price(self, lock_address: str, chain_id: int) -> int:
        """Raw key price in the lock's token units"""
        try:
            lock = await self.lock_contract(lock_address, chain_id)
            return await lock.functions.keyPrice().call()
        except RPC_ERRORS as e:
            raise ChainReadError(f"keyPrice() failed for {lock_address}: {e}") from e

    async def get_token_decimals(self, token_address: Optional[str], chain_id: int) -> int:
        if not token_address or token_address.lower() == ZERO_ADDRESS:
            try:
                network = await self.networks.get(chain_id)
            except CONFIG_ERRORS as e:
                raise ChainReadError(f"Network configuration unavailable for chain {chain_id}: {e}") from e
            if network and network.native_currency_decimals:
                return network.native_currency_decimals
            return NATIVE_DECIMALS
        try:
            token = await self.token_contract(token_address, chain_id)
            return await token.functions.decimals().call()
        except RPC_ERRORS as e:
            raise ChainReadError(f"decimals() failed for {token_address}: {e}") from e

    async def get_pricing(self, lock_address: str, chain_id: int) -> OnChainPricing:
        """Key price and currency as configured on the lock"""
        try:
            lock = await self.lock_contract(lock_address, chain_id)
            raw_price, token_address = await asyncio.gather(
                lock.functions.keyPrice().call(),
                lock.functions.tokenAddress().call(),
            )
        except RPC_ERRORS as e:
            raise ChainReadError(f"Could not read pricing for {lock_address}: {e}") from e

        decimals = await self.get_token_decimals(token_address, chain_id)
        try:
            currency = await self.networks.resolve_currency(chain_id, token_address)
        except CONFIG_ERRORS as e:
            raise ChainReadError(f"Network configuration unavailable for chain {chain_id}: {e}") from e
        return OnChainPricing(
            price=to_decimal_amount(raw_price, decimals),
            currency=currency,
            token_address=token_address,
            raw_price=raw_price,
            decimals=decimals,
        )

    async def close(self):
        for w3 in self._clients.values():
            provider = w3.provider
            disconnect = getattr(provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()
        self._clients.clear()
