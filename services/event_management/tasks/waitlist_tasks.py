"""Waitlist confirmation emails"""
import logging
from shared.cache.celery_app import celery_app
from shared.functions.client import FunctionsError, succeeded
from services.ticket_purchase.tasks.email_tasks import run_async, invoke_function

logger = logging.getLogger(__name__)


@celery_app.task(
    name="send_waitlist_confirmations",
    bind=True,
    autoretry_for=(FunctionsError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 2},
)
def send_waitlist_confirmations_task(self, event_id: str):
    """Send confirmations to every waitlist entry of the event not yet confirmed"""
    response = run_async(invoke_function("send-waitlist-confirmations", {"event_id": event_id}))

    if not succeeded(response):
        logger.warning(f"[WAITLIST] Confirmation batch failed for event {event_id}: {response.get('error')}")
        return {"event_id": event_id, "status": "failed"}

    return {"event_id": event_id, "status": "sent", "sent": response.get("sent")}
