"""
Retry with exponential backoff for remote calls.

Retryable failures are HTTP-like 429/5xx statuses and network-class errors.
Everything else (4xx, validation, configuration) is re-raised immediately.
"""

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import requests

from autotrade_llm.errors import AutoTradeError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATUS_IN_MESSAGE = re.compile(r"(\d{3}) status code")
_STATUS_ATTRIBUTES = ("status", "status_code", "code", "http_status")

NETWORK_ERRORS = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)


def extract_status(error: BaseException) -> Optional[int]:
    """
    Find an HTTP-like status code on an exception.

    Looks at common status attributes first, then the attached response,
    then a "NNN status code" substring of the message.
    """
    for attr in _STATUS_ATTRIBUTES:
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
            return value

    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and 100 <= value <= 599:
        return value

    match = _STATUS_IN_MESSAGE.search(str(error))
    if match:
        return int(match.group(1))
    return None


def is_retryable(error: BaseException) -> bool:
    """True for 429, any 5xx, and network-class failures"""
    status = extract_status(error)
    if status is not None:
        return status == 429 or 500 <= status < 600

    if isinstance(error, AutoTradeError):
        return bool(error.retryable)

    return isinstance(error, NETWORK_ERRORS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    *,
    jitter: float = 1.0,
    description: str = "remote call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Invoke ``operation`` up to ``max_attempts`` times.

    Args:
        operation: Zero-argument callable returning an awaitable
        max_attempts: Total number of invocations allowed
        base_delay: Delay in seconds before the first retry
        jitter: Upper bound of the uniform random delay added to each wait
        description: Operation name used in log lines
        sleep: Awaitable sleep function

    Returns:
        The operation's result

    Raises:
        The first non-retryable error, or the last error once attempts run out
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    last_error: Optional[BaseException] = None
    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise
            last_error = e
            if attempt == max_attempts - 1:
                break
            delay = base_delay * (2 ** attempt) + random.uniform(0, jitter)
            logger.warning(
                f"{description}: attempt {attempt + 1}/{max_attempts} failed: {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            await sleep(delay)

    logger.error(f"{description}: failed after {max_attempts} attempts: {last_error}")
    raise last_error


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings shared by every remote call in a session"""
    max_attempts: int = 5
    base_delay: float = 2.0
    jitter: float = 1.0

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "remote call") -> T:
        return await with_retry(
            operation,
            self.max_attempts,
            self.base_delay,
            jitter=self.jitter,
            description=description,
        )

    @classmethod
    def from_config(cls, retry_config) -> "RetryPolicy":
        return cls(
            max_attempts=retry_config.max_attempts,
            base_delay=retry_config.base_delay_seconds,
            jitter=retry_config.jitter_seconds,
        )
