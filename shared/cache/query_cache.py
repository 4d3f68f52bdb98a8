"""
In-process query cache keyed by parameter tuples.

Fresh results are served from a cachetools TTLCache; concurrent callers
asking for the same key share one in-flight fetch. Failures are never
cached.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple, Type

from cachetools import TTLCache

from shared.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class QueryCache:
    def __init__(
        self,
        ttl_seconds: float = 300,
        maxsize: int = 1024,
        retries: int = 2,
        retry_delay: float = 0.5,
        retry_on: Tuple[Type[Exception], ...] = (Exception,),
    ):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds)
        self._in_flight: Dict[Hashable, asyncio.Future] = {}
        self.retries = retries
        self.retry_delay = retry_delay
        self.retry_on = retry_on

    def peek(self, key: Hashable) -> Optional[Any]:
        return self._cache.get(key)

    async def fetch(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for `key`, loading it once if missing.

        The loader is retried `retries` times; its final exception is
        raised to every waiting caller and nothing is stored.
        """
        if key in self._cache:
            return self._cache[key]

        pending = self._in_flight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            value = await retry_with_backoff(
                loader,
                max_retries=self.retries,
                initial_delay=self.retry_delay,
                exceptions=self.retry_on,
            )
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited future does not log a warning
            future.exception()
            raise
        else:
            self._cache[key] = value
            future.set_result(value)
            return value
        finally:
            if not future.done():
                # Loader was cancelled
                future.cancel()
            self._in_flight.pop(key, None)

    def invalidate(self, predicate: Optional[Callable[[Hashable], bool]] = None) -> int:
        """Drop every key matching `predicate` (all keys when omitted)"""
        if predicate is None:
            count = len(self._cache)
            self._cache.clear()
            return count

        stale = [key for key in list(self._cache.keys()) if predicate(key)]
        for key in stale:
            self._cache.pop(key, None)
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached queries")
        return len(stale)
