"""Redis client for shared caching and distributed locks"""
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
import os
import json
import uuid
from typing import Optional, Any
import asyncio
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
redis_pool: Optional[ConnectionPool] = None


class LockNotAcquired(Exception):
    """Raised when a distributed lock could not be taken within its timeout"""


async def init_redis():
    """Initialize the Redis connection pool"""
    global redis_client, redis_pool

    max_connections = int(os.getenv("REDIS_MAX_CONNECTIONS", "20"))

    redis_pool = ConnectionPool.from_url(
        settings.REDIS_URL,
        password=os.getenv("REDIS_PASSWORD"),
        max_connections=max_connections,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        retry_on_timeout=True,
        health_check_interval=30,
    )

    redis_client = redis.Redis(connection_pool=redis_pool)

    try:
        await redis_client.ping()
        logger.info(f"Redis connected (pool max_connections={max_connections})")
    except Exception as e:
        logger.error(f"Error connecting to Redis: {e}")


async def get_redis() -> redis.Redis:
    """Return the shared Redis client, connecting on first use"""
    if redis_client is None:
        await init_redis()
    return redis_client


async def close_redis():
    """Close the Redis client and its pool"""
    global redis_client, redis_pool
    if redis_client:
        await redis_client.close()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None
    logger.info("Redis disconnected")


class DistributedLock:
    """
    Redis lock keyed by name. Used to serialize ticket issuance per
    payment reference across workers.
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(self, key: str, timeout: int = 10, expire: int = 30):
        self.key = f"lock:{key}"
        self.timeout = timeout
        self.expire = expire
        self.identifier = None

    async def acquire(self) -> bool:
        redis_conn = await get_redis()
        self.identifier = str(uuid.uuid4())

        loop = asyncio.get_running_loop()
        end_time = loop.time() + self.timeout
        while loop.time() < end_time:
            if await redis_conn.set(self.key, self.identifier, nx=True, ex=self.expire):
                return True
            await asyncio.sleep(0.1)

        return False

    async def release(self):
        if not self.identifier:
            return

        redis_conn = await get_redis()
        # Only the owner may release
        await redis_conn.eval(self.RELEASE_SCRIPT, 1, self.key, self.identifier)
        self.identifier = None

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()


async def cache_get(key: str) -> Optional[Any]:
    redis_conn = await get_redis()
    value = await redis_conn.get(key)
    if value:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return None


async def cache_set(key: str, value: Any, expire: int = 3600):
    redis_conn = await get_redis()
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    await redis_conn.setex(key, expire, value)


