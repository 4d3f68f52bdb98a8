import httpx
import logging
from typing import Optional, Dict
from jose import jwt, JWTError
from redis.exceptions import RedisError

from app.core.config import settings
from shared.cache.redis_client import cache_get, cache_set

logger = logging.getLogger(__name__)

PRIVY_ISSUER = 'privy.io'
PRIVY_JWKS_URL = 'https://auth.privy.io/api/v1/apps/{app_id}/jwks.json'
JWKS_CACHE_KEY = 'privy:jwks:{app_id}'


async def fetch_privy_jwks(app_id: str) -> Optional[Dict]:
    '''
    Load the Privy JWKS for the app, cached in Redis.

    Returns None when neither the cache nor Privy can provide it.
    '''
    cache_key = JWKS_CACHE_KEY.format(app_id=app_id)
    try:
        cached = await cache_get(cache_key)
        if cached:
            return cached
    except RedisError as e:
        logger.warning(f'JWKS cache unavailable: {e}')

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(PRIVY_JWKS_URL.format(app_id=app_id))
            response.raise_for_status()
            jwks = response.json()
    except httpx.HTTPError as e:
        logger.error(f'Error fetching Privy JWKS: {e}')
        return None

    try:
        await cache_set(cache_key, jwks, expire=settings.PRIVY_JWKS_CACHE_SECONDS)
    except RedisError as e:
        logger.warning(f'Could not cache Privy JWKS: {e}')

    return jwks


def decode_privy_token(token: str, key, app_id: str) -> Dict:
    '''Verify signature, audience and issuer of a Privy access token'''
    return jwt.decode(
        token,
        key,
        algorithms=['ES256'],
        audience=app_id,
        issuer=PRIVY_ISSUER,
    )


async def verify_privy_token(token: str) -> Optional[Dict]:
    '''
    Verify a Privy access token (ES256).

    Tries the app JWKS first and falls back to the verification key
    configured in PRIVY_VERIFICATION_KEY. Returns the claims or None.
    '''
    app_id = settings.PRIVY_APP_ID
    if not app_id:
        logger.error('PRIVY_APP_ID is not configured')
        return None

    jwks = await fetch_privy_jwks(app_id)
    if jwks:
        try:
            return decode_privy_token(token, jwks, app_id)
        except JWTError as e:
            logger.debug(f'Token rejected by JWKS: {e}')

    if settings.PRIVY_VERIFICATION_KEY:
        try:
            return decode_privy_token(token, settings.PRIVY_VERIFICATION_KEY, app_id)
        except JWTError as e:
            logger.info(f'Invalid Privy token: {e}')

    return None
