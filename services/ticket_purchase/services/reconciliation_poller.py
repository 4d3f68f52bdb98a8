"""
Observe a fiat payment until its NFT key is granted.

The webhook handler and issuance task drive progress; the poller only
reads `get-transaction-status` and reports one terminal state.
"""
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from services.ticket_purchase.models.purchase import ProcessingResult
from shared.chain.network_config import NetworkConfigService
from shared.functions.client import BackendFunctionsClient, FunctionsError

logger = logging.getLogger(__name__)

MSG_PROCESSING = "Processing your payment..."
MSG_RECORDED = "Payment recorded. Issuing your NFT ticket..."
MSG_CONFIRMED = "Payment confirmed. Issuing your NFT ticket..."
MSG_ISSUED = "Your NFT ticket has been issued successfully!"
MSG_TIMEOUT = "Processing is taking longer than expected. Please go to My Tickets for manual issuance/reconciliation."
MSG_ISSUANCE_TIMEOUT = "Ticket issuance is taking longer than expected. Please go to My Tickets for manual issuance/reconciliation."
MSG_REGISTRATION_CLOSED = "Ticket issuance was declined because registration was closed."
MSG_ISSUANCE_FAILED = "Ticket issuance failed. Please go to My Tickets for manual issuance/reconciliation."
MSG_UNEXPECTED = "An error occurred while processing your ticket."

# Keys the status payload may use for the grant transaction hash
TX_HASH_KEYS = ("tx_hash", "txHash", "transactionHash", "key_grant_tx_hash")

TERMINAL_STATES = ("success", "error", "timeout")


def extract_tx_hash(gateway_response: Optional[Dict[str, Any]]) -> Optional[str]:
    if not gateway_response:
        return None
    for key in TX_HASH_KEYS:
        if gateway_response.get(key):
            return gateway_response[key]
    return None


def functions_status_fetcher(functions: BackendFunctionsClient) -> Callable[[str], Awaitable[Dict[str, Any]]]:
    async def fetch(reference: str) -> Dict[str, Any]:
        return await functions.invoke("get-transaction-status", {"reference": reference})
    return fetch


class TicketProcessingPoller:
    """
    processing -> success | error | timeout, never back.

    `on_purchase_success` fires at most once per run. `cancel()` stops
    the loop before its next attempt.
    """

    def __init__(
        self,
        fetch_status: Callable[[str], Awaitable[Dict[str, Any]]],
        networks: Optional[NetworkConfigService] = None,
        on_purchase_success: Optional[Callable[[ProcessingResult], Any]] = None,
        interval: float = 2.0,
        max_attempts: int = 30,
        initial_delay: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetch_status = fetch_status
        self.networks = networks
        self.on_purchase_success = on_purchase_success
        self.interval = interval
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.sleep = sleep
        self._reset()

    def _reset(self):
        self.state = "processing"
        self.message = MSG_PROCESSING
        self.transaction_hash: Optional[str] = None
        self.explorer_url: Optional[str] = None
        self.attempts = 0
        self.cancelled = False
        self._success_notified = False

    def cancel(self):
        self.cancelled = True

    def _result(self) -> ProcessingResult:
        return ProcessingResult(
            state=self.state,
            message=self.message,
            transaction_hash=self.transaction_hash,
            explorer_url=self.explorer_url,
            attempts=self.attempts,
        )

    def _finish(self, state: str, message: str) -> ProcessingResult:
        if self.state in TERMINAL_STATES:
            return self._result()
        self.state = state
        self.message = message
        logger.info(f"[TICKET PROCESSING] {state} after {self.attempts} attempts: {message}")
        return self._result()

    async def _resolve_explorer_url(self, chain_id: Optional[int]) -> None:
        if not self.transaction_hash:
            return
        self.explorer_url = self.transaction_hash
        if self.networks is None or chain_id is None:
            return
        try:
            self.explorer_url = await self.networks.explorer_tx_url(chain_id, self.transaction_hash)
        except Exception as e:
            logger.warning(f"Could not resolve explorer URL for {self.transaction_hash}: {e}")

    async def _succeed(self, chain_id: Optional[int]) -> ProcessingResult:
        await self._resolve_explorer_url(chain_id)
        result = self._finish("success", MSG_ISSUED)
        if not self._success_notified and self.on_purchase_success is not None:
            self._success_notified = True
            outcome = self.on_purchase_success(result)
            if inspect.isawaitable(outcome):
                await outcome
        return result

    async def run(self, reference: str, chain_id: Optional[int] = None) -> ProcessingResult:
        self._reset()
        logger.info(f"[TICKET PROCESSING] Monitoring reference {reference}")
        self.message = MSG_RECORDED

        await self.sleep(self.initial_delay)

        confirmed = False
        while self.attempts < self.max_attempts:
            if self.cancelled:
                logger.info(f"[TICKET PROCESSING] Monitoring of {reference} cancelled")
                return self._result()

            self.attempts += 1
            last_attempt = self.attempts >= self.max_attempts
            try:
                data = await self.fetch_status(reference)
            except FunctionsError as e:
                logger.warning(f"[WEBHOOK MONITOR] Status check error: {e}")
                data = None
            except Exception as e:
                logger.error(f"[WEBHOOK MONITOR] Error checking status: {e}", exc_info=True)
                if last_attempt:
                    return self._finish("error", MSG_UNEXPECTED)
                await self.sleep(self.interval)
                continue

            if data and data.get("found"):
                gateway = data.get("gateway_response") or {}
                if gateway.get("key_granted"):
                    self.transaction_hash = extract_tx_hash(gateway)
                    return await self._succeed(chain_id)

                issuance_error = data.get("issuance_last_error")
                if issuance_error:
                    if issuance_error == "registration_closed":
                        return self._finish("error", MSG_REGISTRATION_CLOSED)
                    return self._finish("error", MSG_ISSUANCE_FAILED)

                if data.get("status") == "success":
                    self.message = MSG_CONFIRMED

            # Timeout message follows the latest response only
            confirmed = bool(data and data.get("found") and data.get("status") == "success")

            if last_attempt:
                break
            await self.sleep(self.interval)

        return self._finish("timeout", MSG_ISSUANCE_TIMEOUT if confirmed else MSG_TIMEOUT)
