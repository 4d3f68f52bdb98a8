"""Retry helpers with exponential backoff"""
import asyncio
from typing import Awaitable, Callable, Any, Optional, Type, Tuple


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Any:
    """
    Run an async callable, retrying on the given exceptions.

    Args:
        func: zero-argument coroutine function
        max_retries: retries after the first attempt
        initial_delay: first delay in seconds
        max_delay: delay ceiling in seconds
        exponential_base: delay multiplier per retry
        exceptions: exception types that trigger a retry
        sleep: replacement for asyncio.sleep (tests)

    Returns:
        The callable's result; the last exception is re-raised once
        retries are exhausted.
    """
    sleep = sleep or asyncio.sleep
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return await func()
        except exceptions:
            if attempt == max_retries:
                raise

            if delay > 0:
                await sleep(delay)
            delay = min(delay * exponential_base, max_delay)
