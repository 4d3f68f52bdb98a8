"""Sponsored (gasless) backend calls with a wallet-paid fallback"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from services.event_management.models.event import Notice
from shared.functions.client import BackendFunctionsClient, FunctionsError

logger = logging.getLogger(__name__)

# Business-rule rejections: paying from the wallet would not be allowed either
NO_FALLBACK_ERRORS = frozenset({"limit_exceeded", "max_keys_reached", "ticket_already_claimed"})

FALLBACK_NOTICE = Notice(title="Gasless transaction failed, using wallet instead...", variant="info")


@dataclass
class GaslessAttempt:
    """
    Either the backend response (`used_fallback` False, possibly an error
    from NO_FALLBACK_ERRORS) or whatever the fallback returned.
    """
    response: Optional[Dict[str, Any]] = None
    fallback_result: Any = None
    used_fallback: bool = False
    notices: List[Notice] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.response and self.response.get("ok"))

    @property
    def error(self) -> Optional[str]:
        return self.response.get("error") if self.response else None


class GaslessFallback:
    def __init__(self, functions: BackendFunctionsClient, access_token: Optional[str] = None):
        self.functions = functions
        self.access_token = access_token

    async def attempt(
        self,
        function_name: str,
        args: Dict[str, Any],
        fallback_fn: Callable[[Any], Awaitable[Any]],
        enabled: bool = True,
        fallback_args: Any = None,
    ) -> GaslessAttempt:
        """
        Invoke `function_name` with `args`; run `fallback_fn` once when the
        sponsored path is disabled, unreachable or rejects the request for
        a reason outside NO_FALLBACK_ERRORS.
        """
        call_args = fallback_args if fallback_args is not None else args

        if not enabled:
            return GaslessAttempt(fallback_result=await fallback_fn(call_args), used_fallback=True)

        try:
            response = await self.functions.invoke(function_name, args, self.access_token)
        except FunctionsError as e:
            logger.warning(f"Gasless {function_name} error, falling back to wallet: {e}")
            return await self._fallback(fallback_fn, call_args)

        if response.get("ok"):
            return GaslessAttempt(response=response)

        error = response.get("error")
        if error in NO_FALLBACK_ERRORS:
            logger.info(f"Gasless {function_name} rejected with {error}; not falling back")
            return GaslessAttempt(response=response)

        logger.warning(f"Gasless {function_name} failed ({error}), falling back to wallet")
        return await self._fallback(fallback_fn, call_args)

    @staticmethod
    async def _fallback(fallback_fn, call_args) -> GaslessAttempt:
        result = await fallback_fn(call_args)
        return GaslessAttempt(
            fallback_result=result,
            used_fallback=True,
            notices=[FALLBACK_NOTICE],
        )
