"""
Rate limiting with slowapi backed by Redis so that every API instance
shares the same counters.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, Response
from starlette.responses import JSONResponse
import hashlib
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

REDIS_URL = settings.REDIS_URL


def get_real_client_ip(request: Request) -> str:
    """Client IP, honouring the usual proxy headers"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # client, proxy1, proxy2
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    cf_connecting_ip = request.headers.get("CF-Connecting-IP")
    if cf_connecting_ip:
        return cf_connecting_ip

    return get_remote_address(request)


def get_user_identifier(request: Request) -> str:
    """IP plus a short hash of the bearer token when present"""
    ip = get_real_client_ip(request)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token_hash = hashlib.sha256(auth_header.encode()).hexdigest()[:8]
        return f"{ip}:{token_hash}"

    return ip


try:
    limiter = Limiter(
        key_func=get_user_identifier,
        storage_uri=REDIS_URL,
        strategy="fixed-window",
        headers_enabled=False,  # incompatible with FastAPI response_model
    )
    logger.info(f"Rate limiter initialized with Redis: {REDIS_URL.split('@')[-1] if '@' in REDIS_URL else 'localhost'}")
except Exception as e:
    logger.warning(f"Redis unavailable for rate limiting, using in-memory storage: {e}")
    limiter = Limiter(
        key_func=get_user_identifier,
        strategy="fixed-window",
        headers_enabled=False,
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    retry_after = exc.detail.split(" ")[-1] if exc.detail else "60"

    logger.warning(
        f"Rate limit exceeded - IP: {get_real_client_ip(request)}, "
        f"Path: {request.url.path}, "
        f"Retry-After: {retry_after}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": "Too many requests. Please wait before trying again.",
            "retry_after_seconds": int(retry_after) if retry_after.isdigit() else 60,
        },
        headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Reset": str(retry_after),
        }
    )


RATE_LIMITS = {
    # Purchases hit the chain and sponsored gas
    "purchase": "10/minute",
    # Paystack may burst retries
    "webhook": "100/minute",
    # Status polling every 2s from an open dialog
    "status": "60/minute",
    "public": "60/minute",
    # Organizer actions (sync pricing, notify waitlist)
    "organizer": "20/minute",
    "default": "30/minute",
}
