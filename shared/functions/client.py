"""
HTTP client for the Supabase edge functions that hold the privileged
side effects (gasless minting, ticket registration, emails, key grants).
"""
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class FunctionsError(Exception):
    """Base class for failures invoking a backend function"""

    def __init__(self, function_name: str, message: str):
        super().__init__(f"{function_name}: {message}")
        self.function_name = function_name


class FunctionsTransportError(FunctionsError):
    """Network error or timeout; the function may not have run"""


class FunctionsHttpError(FunctionsError):
    """Non-2xx response without a structured {ok, error} body"""

    def __init__(self, function_name: str, status_code: int, body: str = ""):
        super().__init__(function_name, f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body


def succeeded(response: Optional[Dict[str, Any]]) -> bool:
    """Older functions answer `{success: true}` instead of `{ok: true}`"""
    if not response:
        return False
    return response.get("ok") is True or response.get("success") is True


class BackendFunctionsClient:
    """
    Invoke edge functions by name with a JSON body.

    Every function answers `{ok, error?, ...payload}`. A structured error
    body is returned as-is even on a non-2xx status so callers can branch
    on the error code; anything else raises.
    """

    def __init__(self, http: httpx.AsyncClient, base_url: str, anon_key: str = ""):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key

    def _headers(self, access_token: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.anon_key:
            headers["apikey"] = self.anon_key
            headers["Authorization"] = f"Bearer {self.anon_key}"
        if access_token:
            headers["X-Privy-Authorization"] = f"Bearer {access_token}"
        return headers

    async def invoke(
        self,
        function_name: str,
        body: Dict[str, Any],
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/functions/v1/{function_name}"
        try:
            response = await self.http.post(url, json=body, headers=self._headers(access_token))
        except httpx.TransportError as e:
            logger.warning(f"Backend function {function_name} unreachable: {e}")
            raise FunctionsTransportError(function_name, str(e)) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_success:
            if not isinstance(data, dict):
                raise FunctionsHttpError(function_name, response.status_code, response.text[:500])
            return data

        if isinstance(data, dict) and ("error" in data or "ok" in data):
            data.setdefault("ok", False)
            logger.info(f"Backend function {function_name} returned {response.status_code}: {data.get('error')}")
            return data

        logger.warning(f"Backend function {function_name} failed with HTTP {response.status_code}")
        raise FunctionsHttpError(function_name, response.status_code, response.text[:500])
