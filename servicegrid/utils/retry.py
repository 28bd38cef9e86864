"""Retry decorator with exponential backoff."""

import asyncio
import functools
from collections.abc import Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def _always(_exc: Exception) -> bool:
    return True


def retry(
    max_attempts: int = 3,
    delay_ms: int = 1000,
    backoff_factor: float = 2.0,
    retry_if: Callable[[Exception], bool] = _always,
) -> Callable[..., Any]:
    """Decorator for async functions with retry logic.

    ``retry_if`` decides whether a raised exception is worth another attempt;
    a rejected exception is re-raised immediately.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt >= max_attempts or not retry_if(e):
                        raise
                    wait = (delay_ms * (backoff_factor ** (attempt - 1))) / 1000
                    logger.debug(
                        "retry_attempt",
                        func=getattr(func, "__name__", repr(func)),
                        attempt=attempt,
                        max_attempts=max_attempts,
                        wait_seconds=wait,
                        error=str(e),
                    )
                    await asyncio.sleep(wait)
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)

        return wrapper

    return decorator
