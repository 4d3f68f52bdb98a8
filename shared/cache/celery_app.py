"""
Celery configuration for background work: ticket issuance after fiat
payments and transactional emails.
"""
from celery import Celery
from kombu import Queue, Exchange
import os
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

REDIS_URL = settings.REDIS_URL
REDIS_MAX_CONNECTIONS = int(os.getenv("CELERY_REDIS_MAX_CONNECTIONS", "50"))

celery_app = Celery(
    "teerex",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "services.ticket_purchase.tasks.email_tasks",
        "services.ticket_purchase.tasks.issuance_tasks",
        "services.event_management.tasks.waitlist_tasks",
    ]
)

default_exchange = Exchange("default", type="direct")
priority_exchange = Exchange("priority", type="direct")

celery_app.conf.task_queues = (
    # Webhook follow-ups and key grants
    Queue("high_priority", priority_exchange, routing_key="high"),
    # Emails and regular work
    Queue("default", default_exchange, routing_key="default"),
    Queue("low_priority", default_exchange, routing_key="low"),
)

celery_app.conf.task_routes = {
    "grant_paystack_keys": {"queue": "high_priority"},
    "send_ticket_email": {"queue": "default"},
    "send_waitlist_confirmations": {"queue": "low_priority"},
}

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,

    # One task at a time per worker process
    worker_prefetch_multiplier=1,

    broker_pool_limit=REDIS_MAX_CONNECTIONS,
    redis_max_connections=REDIS_MAX_CONNECTIONS,

    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,
    broker_heartbeat=30,

    # Ack only when finished so a lost worker does not drop a key grant
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
    result_extended=True,

    worker_concurrency=4,
    worker_max_tasks_per_child=1000,

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    task_annotations={
        "send_ticket_email": {"rate_limit": "30/m"},
        "send_waitlist_confirmations": {"rate_limit": "10/m"},
    },
)

logger.info(
    "Celery configured - Broker: %s, Pool limit: %d, Concurrency: %d",
    REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL,
    REDIS_MAX_CONNECTIONS,
    celery_app.conf.worker_concurrency
)
