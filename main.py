"""API gateway - application entry point"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
import os
import logging
from contextlib import asynccontextmanager

from app.core.config import settings
from app.core.context import AppServices
from shared.database import connection
from shared.database.connection import init_db, close_db
from shared.cache.redis_client import init_redis, close_redis
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting TeeRex API...")
    await init_db()
    await init_redis()
    app.state.services = AppServices.build(connection.async_session_maker)
    logger.info("TeeRex API started")
    yield
    logger.info("Shutting down TeeRex API...")
    await app.state.services.close()
    await close_db()
    await close_redis()
    logger.info("TeeRex API stopped")


app = FastAPI(
    title="TeeRex API",
    description="Purchase and reconciliation of NFT event tickets",
    version="1.0.0",
    lifespan=lifespan
)

# CORS before rate limiting
default_origins = "http://localhost:5173,http://127.0.0.1:5173"
cors_origins_str = os.getenv("CORS_ORIGINS", default_origins)

if settings.APP_ENV == "development":
    logger.info("Development mode: CORS allows all origins")
    allow_origins = ["*"]
    allow_credentials = False  # credentials cannot be combined with "*"
else:
    allow_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    allow_credentials = True
    logger.info(f"CORS origins: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

from services.ticket_purchase.routes.purchase import router as purchase_router
from services.event_management.routes.events import router as events_router

app.include_router(purchase_router, prefix="/api/v1/purchases", tags=["purchases"])
app.include_router(events_router, prefix="/api/v1/events", tags=["events"])


@app.get("/health")
async def health():
    return {"status": "ok", "service": "teerex-api"}


@app.get("/ready")
async def ready():
    """Checks database and Redis connectivity"""
    try:
        from sqlalchemy import text
        async with connection.async_session_maker() as session:
            await session.execute(text("SELECT 1"))

        from shared.cache.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()

        return {"status": "ready", "database": "connected", "redis": "connected"}
    except Exception as e:
        logger.error(f"Ready check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_ENV == "development"
    )
