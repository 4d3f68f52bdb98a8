"""FastAPI authentication dependencies"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional, Dict
from shared.auth.privy_validator import verify_privy_token


security = HTTPBearer()


def _principal(payload: Dict, token: str) -> Optional[Dict]:
    user_id = payload.get('sub')
    if not user_id:
        return None
    # The raw token is forwarded to backend functions as X-Privy-Authorization
    return {
        'user_id': user_id,
        'session_id': payload.get('sid'),
        'access_token': token,
    }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict:
    '''Current user from the Privy access token'''
    token = credentials.credentials
    payload = await verify_privy_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Invalid or expired token',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    principal = _principal(payload, token)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Invalid token: missing subject',
        )

    return principal
