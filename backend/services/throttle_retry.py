"""
Legal Review Hub - Throttle Retry

Retries an async operation when the backing service throttles or is briefly
unavailable: HTTP 429/503, "throttl..." messages, and transient MongoDB
connection errors. Delays follow Retry-After when the error carries it, otherwise
exponential backoff with jitter, capped at max_delay.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from pymongo.errors import AutoReconnect, NetworkTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0      # seconds
DEFAULT_MAX_DELAY = 30.0      # seconds
MAX_JITTER = 0.5              # seconds

THROTTLE_STATUS_CODES = (429, 503)


def is_throttling_error(error: BaseException) -> bool:
    if isinstance(error, (AutoReconnect, NetworkTimeout)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in THROTTLE_STATUS_CODES
    message = str(error).lower()
    return "throttl" in message or "429" in message or "503" in message


def get_retry_after(error: BaseException) -> Optional[float]:
    """Retry-After in seconds from an httpx status error, if present and numeric."""
    if not isinstance(error, httpx.HTTPStatusError):
        return None
    value = error.response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def calculate_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    retry_after: Optional[float] = None
) -> float:
    if retry_after is not None:
        return min(retry_after, max_delay)
    return min(base_delay * (2 ** attempt) + random.uniform(0, MAX_JITTER), max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    operation_name: str = "operation",
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None
) -> T:
    """
    Run operation, retrying throttling errors up to max_retries times.

    Non-throttling errors and the last throttling error propagate unchanged.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_throttling_error(e) or attempt >= max_retries:
                raise
            delay = calculate_delay(attempt, base_delay, max_delay, get_retry_after(e))
            logger.warning(
                "Throttled during %s (attempt %d/%d), retrying in %.2fs: %s",
                operation_name, attempt + 1, max_retries, delay, str(e)
            )
            await (sleep or asyncio.sleep)(delay)
            attempt += 1
