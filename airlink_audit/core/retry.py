"""
Async retry with exponential backoff for flaky collaborator calls.
"""

import asyncio
import logging
import random
from functools import wraps
from typing import Any, Awaitable, Callable, Tuple, Type, TypeVar

T = TypeVar("T")

logger = logging.getLogger("airlink_audit.retry")


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    jitter: float = 0.1,
    **kwargs: Any,
) -> T:
    """
    Вызвать корутину, повторяя при ошибке с экспоненциальной задержкой.

    По умолчанию повторяется любое Exception, включая asyncio.TimeoutError.
    CancelledError не является Exception и всегда пробрасывается сразу.
    """
    attempt = 1
    delay = base_delay
    while True:
        try:
            return await func(*args, **kwargs)
        except exceptions as exc:
            if attempt >= max_attempts:
                raise
            name = getattr(func, "__qualname__", repr(func))
            logger.warning(
                f"{name} failed (attempt {attempt}/{max_attempts}): "
                f"{type(exc).__name__}: {exc}; retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay + random.uniform(0, jitter))
            attempt += 1
            delay *= 2


def retry_async(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    jitter: float = 0.1,
):
    """Декоратор-обёртка над call_with_retry."""

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await call_with_retry(
                func,
                *args,
                max_attempts=max_attempts,
                base_delay=base_delay,
                exceptions=exceptions,
                jitter=jitter,
                **kwargs,
            )

        return wrapper

    return decorator
