"""
Key purchase through a buyer wallet.

`BrowserWallet` cannot sign server-side: it prepares the contract calls
for the user's wallet to sign. `LocalAccountWallet` holds a private key
(service or test accounts) and submits the transactions itself.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3

from shared.chain.abi import ZERO_ADDRESS
from shared.chain.lock_client import RPC_ERRORS, ChainReadError, LockClient, OnChainPricing

logger = logging.getLogger(__name__)

RECEIPT_TIMEOUT_SECONDS = 120


@dataclass
class KeyPurchaseResult:
    success: bool
    transaction_hash: Optional[str] = None
    error: Optional[str] = None
    # Calls the buyer still has to sign, in order
    unsigned_transactions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def requires_signature(self) -> bool:
        return not self.success and bool(self.unsigned_transactions)


class WalletSigner(Protocol):
    address: str

    async def purchase_key(self, lock_address: str, price: Decimal, currency: str, chain_id: int) -> KeyPurchaseResult:
        ...


def _log_price_drift(lock_address: str, pricing: OnChainPricing, price, currency: str) -> None:
    price_differs = price is not None and Decimal(str(price)) != pricing.price
    if price_differs or (currency not in (None, "", "FREE") and currency != pricing.currency):
        logger.warning(
            f"Lock {lock_address} charges {pricing.price} {pricing.currency}, "
            f"event lists {price} {currency}; using on-chain price"
        )


async def build_purchase_calls(
    lock_client: LockClient,
    lock_address: str,
    chain_id: int,
    recipient: str,
    pricing: OnChainPricing,
) -> List[Dict[str, Any]]:
    """ERC20 approve (when needed) followed by the lock's purchase()"""
    lock = await lock_client.lock_contract(lock_address, chain_id)
    recipient = AsyncWeb3.to_checksum_address(recipient)
    is_native = pricing.token_address.lower() == ZERO_ADDRESS

    calls = []
    if not is_native and pricing.raw_price > 0:
        token = await lock_client.token_contract(pricing.token_address, chain_id)
        calls.append({
            "to": token.address,
            "data": token.encode_abi("approve", args=[lock.address, pricing.raw_price]),
            "value": 0,
            "chainId": chain_id,
        })

    calls.append({
        "to": lock.address,
        "data": lock.encode_abi(
            "purchase",
            args=[[pricing.raw_price], [recipient], [ZERO_ADDRESS], [ZERO_ADDRESS], [b""]],
        ),
        "value": pricing.raw_price if is_native else 0,
        "chainId": chain_id,
    })
    return calls


class BrowserWallet:
    """A wallet held by the user's browser session"""

    def __init__(self, address: str, lock_client: LockClient):
        self.address = address
        self.lock_client = lock_client

    async def purchase_key(self, lock_address: str, price: Decimal, currency: str, chain_id: int) -> KeyPurchaseResult:
        try:
            pricing = await self.lock_client.get_pricing(lock_address, chain_id)
            _log_price_drift(lock_address, pricing, price, currency)
            calls = await build_purchase_calls(self.lock_client, lock_address, chain_id, self.address, pricing)
        except (ChainReadError, ValueError) as e:
            return KeyPurchaseResult(success=False, error=str(e))
        return KeyPurchaseResult(success=False, unsigned_transactions=calls)


class LocalAccountWallet:
    """A wallet whose key is available to this process"""

    def __init__(self, account: LocalAccount, lock_client: LockClient):
        self.account = account
        self.address = account.address
        self.lock_client = lock_client

    async def _send(self, w3: AsyncWeb3, call: Dict[str, Any]) -> str:
        tx = {
            "from": self.address,
            "to": call["to"],
            "data": call["data"],
            "value": call["value"],
            "chainId": call["chainId"],
            "nonce": await w3.eth.get_transaction_count(self.address, "pending"),
        }
        tx["gas"] = await w3.eth.estimate_gas(tx)
        tx["gasPrice"] = await w3.eth.gas_price

        signed = self.account.sign_transaction(tx)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT_SECONDS)
        if receipt["status"] != 1:
            raise ChainReadError(f"Transaction {AsyncWeb3.to_hex(tx_hash)} reverted")
        return AsyncWeb3.to_hex(tx_hash)

    async def purchase_key(self, lock_address: str, price: Decimal, currency: str, chain_id: int) -> KeyPurchaseResult:
        try:
            pricing = await self.lock_client.get_pricing(lock_address, chain_id)
            _log_price_drift(lock_address, pricing, price, currency)
            calls = await build_purchase_calls(self.lock_client, lock_address, chain_id, self.address, pricing)
            w3 = await self.lock_client.web3_for(chain_id)

            tx_hash = None
            for call in calls:
                tx_hash = await self._send(w3, call)
        except ChainReadError as e:
            return KeyPurchaseResult(success=False, error=str(e))
        except RPC_ERRORS as e:
            logger.error(f"Key purchase on {lock_address} failed: {e}")
            return KeyPurchaseResult(success=False, error=str(e))

        logger.info(f"Key purchased on {lock_address} for {self.address}: {tx_hash}")
        return KeyPurchaseResult(success=True, transaction_hash=tx_hash)
