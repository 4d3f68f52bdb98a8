"""Celery tasks that trigger transactional emails through backend functions"""
from typing import Dict, Optional
import logging
import asyncio
import httpx
from app.core.config import settings
from shared.cache.celery_app import celery_app
from shared.functions.client import BackendFunctionsClient, FunctionsError, succeeded

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run a coroutine from Celery's synchronous worker context"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def invoke_function(function_name: str, body: Dict, access_token: Optional[str] = None) -> Dict:
    """One-off backend function call with its own HTTP client"""
    async with httpx.AsyncClient(timeout=settings.FUNCTIONS_TIMEOUT_SECONDS) as http:
        client = BackendFunctionsClient(http, settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
        return await client.invoke(function_name, body, access_token)


@celery_app.task(
    name="send_ticket_email",
    bind=True,
    autoretry_for=(FunctionsError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": 3},
)
def send_ticket_email_task(self, event_id: str, user_email: str, wallet_address: str,
                           txn_hash: str, chain_id: int, access_token: Optional[str] = None):
    """
    Ask the backend to email the ticket for a completed purchase.

    Transport failures are retried with backoff; a rejected request is
    logged and not retried.
    """
    logger.info(f"[CELERY] Sending ticket email for event {event_id} tx {txn_hash}")

    body = {
        "event_id": event_id,
        "user_email": user_email,
        "wallet_address": wallet_address,
        "txn_hash": txn_hash,
        "chain_id": chain_id,
    }
    response = run_async(invoke_function("send-ticket-email", body, access_token))

    if not succeeded(response):
        logger.warning(f"[TICKET EMAIL] Backend rejected ticket email for {txn_hash}: {response.get('error')}")
        return {"status": "failed", "error": response.get("error")}

    logger.info(f"[CELERY] Ticket email sent for tx {txn_hash}")
    return {"status": "sent", "txn_hash": txn_hash}
