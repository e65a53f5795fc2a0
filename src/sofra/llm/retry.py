"""
Sofra - Transport retry for LLM calls.

Only transient transport failures are retried: request timeouts,
dropped connections, rate limits and 5xx responses. A reply that
arrived but was malformed is never retried here.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import openai

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})

RETRYABLE_MESSAGE_MARKERS = (
    "timeout",
    "timed out",
    "network",
    "connection",
    "econnreset",
    "socket hang up",
    "temporarily unavailable",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with proportional jitter."""

    max_attempts: int = 2
    base_delay_ms: int = 500
    max_delay_ms: int = 2000
    jitter_ratio: float = 0.2

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay_ms = min(self.base_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)
        jitter = delay_ms * self.jitter_ratio
        delay_ms = max(0.0, delay_ms + random.uniform(-jitter, jitter))
        return delay_ms / 1000

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        from sofra.config import settings

        return cls(
            max_attempts=settings.llm_max_attempts,
            base_delay_ms=settings.llm_retry_base_delay_ms,
            max_delay_ms=settings.llm_retry_max_delay_ms,
            jitter_ratio=settings.llm_retry_jitter_ratio,
        )


def is_retryable_error(error: BaseException) -> bool:
    """True for transient transport failures."""
    if isinstance(error, openai.APIConnectionError):  # includes APITimeoutError
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code in RETRYABLE_STATUS_CODES
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    label: str = "llm",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call fn, retrying transient failures up to policy.max_attempts total."""
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= policy.max_attempts or not is_retryable_error(e):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{label}: attempt {attempt}/{policy.max_attempts} failed ({e}); retrying in {delay:.2f}s"
            )
            await sleep(delay)
            attempt += 1
