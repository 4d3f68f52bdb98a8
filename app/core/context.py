"""Long-lived clients and services shared by the API routes"""
import logging
from dataclasses import dataclass

import httpx
from fastapi import Request

from app.core.config import settings
from services.event_management.services.gating_service import WaitlistService
from services.event_management.services.lock_state_service import LockStateService
from services.ticket_purchase.services.paystack_service import PaystackService
from services.ticket_purchase.services.purchase_orchestrator import PurchaseOrchestrator
from shared.cache.query_cache import QueryCache
from shared.chain.lock_client import ChainReadError, LockClient
from shared.chain.network_config import NetworkConfigService
from shared.functions.client import BackendFunctionsClient

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    http: httpx.AsyncClient
    functions: BackendFunctionsClient
    networks: NetworkConfigService
    lock_client: LockClient
    lock_state: LockStateService
    paystack: PaystackService
    waitlist: WaitlistService
    purchases: PurchaseOrchestrator

    @classmethod
    def build(cls, session_factory) -> "AppServices":
        http = httpx.AsyncClient(timeout=settings.FUNCTIONS_TIMEOUT_SECONDS)
        functions = BackendFunctionsClient(http, settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
        networks = NetworkConfigService(session_factory, ttl_seconds=settings.NETWORK_CONFIG_TTL_SECONDS)
        lock_client = LockClient(networks, timeout=settings.RPC_TIMEOUT_SECONDS)
        lock_cache = QueryCache(
            ttl_seconds=settings.LOCK_STATE_STALE_SECONDS,
            retries=settings.LOCK_STATE_RETRIES,
            retry_on=(ChainReadError,),
        )
        paystack = PaystackService(http)
        return cls(
            http=http,
            functions=functions,
            networks=networks,
            lock_client=lock_client,
            lock_state=LockStateService(lock_client, lock_cache, functions),
            paystack=paystack,
            waitlist=WaitlistService(functions),
            purchases=PurchaseOrchestrator(
                functions,
                lock_client,
                networks,
                paystack,
                gasless_enabled=settings.GASLESS_ENABLED,
            ),
        )

    async def close(self):
        await self.lock_client.close()
        await self.http.aclose()
        logger.info("Application services closed")


def get_services(request: Request) -> AppServices:
    """FastAPI dependency returning the services built at startup"""
    return request.app.state.services
