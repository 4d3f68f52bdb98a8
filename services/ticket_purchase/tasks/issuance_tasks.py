"""Ticket issuance after a confirmed fiat payment"""
import logging
import httpx
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.core.config import settings
from shared.cache.celery_app import celery_app
from shared.cache.redis_client import DistributedLock, LockNotAcquired, close_redis
from shared.database.connection import to_async_url
from shared.functions.client import BackendFunctionsClient, FunctionsError
from services.ticket_purchase.services.paystack_service import PaystackService
from services.ticket_purchase.tasks.email_tasks import run_async

logger = logging.getLogger(__name__)


async def _grant(reference: str):
    engine = create_async_engine(to_async_url(settings.DATABASE_URL), pool_size=2, max_overflow=2)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        # One issuance per reference across workers and webhook retries
        async with DistributedLock(f"paystack-grant:{reference}", timeout=5, expire=300):
            async with httpx.AsyncClient(timeout=settings.FUNCTIONS_TIMEOUT_SECONDS) as http:
                functions = BackendFunctionsClient(http, settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
                async with session_factory() as db:
                    return await PaystackService.grant_keys(db, functions, reference)
    finally:
        await close_redis()
        await engine.dispose()


@celery_app.task(
    name="grant_paystack_keys",
    bind=True,
    autoretry_for=(FunctionsError, LockNotAcquired),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
)
def grant_paystack_keys_task(self, reference: str):
    """Grant the NFT key for a paid Paystack reference"""
    logger.info(f"[CELERY] Granting key for Paystack reference {reference}")
    result = run_async(_grant(reference))
    logger.info(f"[CELERY] Key grant for {reference}: {result.get('status')}")
    return {"reference": reference, **result}
