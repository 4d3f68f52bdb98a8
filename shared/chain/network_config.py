"""Network configuration loaded from the network_configs table"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select

from shared.chain.abi import ZERO_ADDRESS
from shared.database.models import NetworkConfig

logger = logging.getLogger(__name__)

UNKNOWN_CURRENCY = "UNKNOWN"


class ChainNetwork(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    chain_id: int
    chain_name: str
    native_currency_symbol: str = "ETH"
    native_currency_decimals: Optional[int] = None
    rpc_url: Optional[str] = None
    block_explorer_url: Optional[str] = None
    usdc_token_address: Optional[str] = None
    dg_token_address: Optional[str] = None
    g_token_address: Optional[str] = None
    up_token_address: Optional[str] = None
    is_mainnet: bool = False
    is_active: bool = True

    def token_symbols(self) -> Dict[str, str]:
        """Lower-cased token address -> symbol for the configured ERC20s"""
        tokens = {
            self.usdc_token_address: "USDC",
            self.dg_token_address: "DG",
            self.g_token_address: "G",
            self.up_token_address: "UP",
        }
        return {address.lower(): symbol for address, symbol in tokens.items() if address}


class NetworkNotConfigured(ValueError):
    pass


class NetworkConfigService:
    """
    Active networks keyed by chain id, cached for `ttl_seconds`.

    Built once at startup and passed to whoever needs it; `loader`
    returns the active rows and defaults to reading the database.
    """

    _CACHE_KEY = "networks"

    def __init__(
        self,
        session_factory=None,
        ttl_seconds: float = 300,
        loader: Optional[Callable[[], Awaitable[List[ChainNetwork]]]] = None,
    ):
        if loader is None and session_factory is None:
            raise ValueError("NetworkConfigService needs a session factory or a loader")
        self._session_factory = session_factory
        self._loader = loader or self._load_from_db
        self._cache: TTLCache = TTLCache(maxsize=1, ttl=ttl_seconds)
        self._lock = asyncio.Lock()

    async def _load_from_db(self) -> List[ChainNetwork]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(NetworkConfig).where(NetworkConfig.is_active.is_(True))
            )
            return [ChainNetwork.model_validate(row) for row in result.scalars().all()]

    async def _networks(self) -> Dict[int, ChainNetwork]:
        networks = self._cache.get(self._CACHE_KEY)
        if networks is not None:
            return networks

        async with self._lock:
            networks = self._cache.get(self._CACHE_KEY)
            if networks is None:
                rows = await self._loader()
                networks = {network.chain_id: network for network in rows}
                self._cache[self._CACHE_KEY] = networks
                logger.info(f"Loaded {len(networks)} active network configurations")
        return networks

    async def get(self, chain_id: int) -> Optional[ChainNetwork]:
        return (await self._networks()).get(chain_id)

    async def require(self, chain_id: int) -> ChainNetwork:
        network = await self.get(chain_id)
        if network is None:
            raise NetworkNotConfigured(f"Network {chain_id} not configured")
        return network

    async def rpc_url(self, chain_id: int) -> str:
        network = await self.require(chain_id)
        if not network.rpc_url:
            raise NetworkNotConfigured(f"No RPC URL configured for chain {chain_id}")
        return network.rpc_url

    async def resolve_currency(self, chain_id: int, token_address: Optional[str]) -> str:
        """Currency symbol for a lock's token address"""
        network = await self.get(chain_id)
        if not token_address or token_address.lower() == ZERO_ADDRESS:
            return network.native_currency_symbol if network else "ETH"
        if network is None:
            return UNKNOWN_CURRENCY
        return network.token_symbols().get(token_address.lower(), UNKNOWN_CURRENCY)

    async def explorer_tx_url(self, chain_id: int, tx_hash: str) -> str:
        """Explorer link for a transaction; the bare hash when no explorer is known"""
        network = await self.get(chain_id)
        if network is None or not network.block_explorer_url:
            return tx_hash
        return f"{network.block_explorer_url.rstrip('/')}/tx/{tx_hash}"

    def invalidate(self):
        self._cache.clear()
