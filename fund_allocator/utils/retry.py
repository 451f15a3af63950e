"""Exponential backoff for price lookups and other network calls."""

import functools
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth another attempt; anything else is a bad answer, not a bad connection
TRANSIENT_ERRORS = (
    ConnectionError,
    TimeoutError,
    requests.ConnectionError,
    requests.Timeout,
)


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float = 30.0,
    factor: float = 2.0,
    jitter: bool = True,
) -> float:
    """Seconds to wait after failed attempt number `attempt` (counting from 0)."""
    delay = min(base_delay * factor ** attempt, max_delay)
    if jitter:
        delay *= random.uniform(0.5, 1.5)
    return delay


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a call."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    factor: float = 2.0
    jitter: bool = True
    retry_on: tuple = TRANSIENT_ERRORS

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        on_retry: Optional[Callable[[Exception, int], None]] = None,
        **kwargs: Any,
    ) -> T:
        """
        Call func, retrying transient failures.

        Errors outside retry_on propagate at once. When the last attempt
        fails its exception propagates unchanged.
        """
        name = getattr(func, "__name__", repr(func))
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except self.retry_on as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    logger.error(f"{name} failed after {attempt} attempts: {e}")
                    raise

                delay = backoff_delay(
                    attempt - 1, self.base_delay, self.max_delay, self.factor, self.jitter
                )
                logger.warning(
                    f"{name} attempt {attempt}/{self.max_attempts} failed: {e}; "
                    f"retrying in {delay:.2f}s",
                    extra={"event_type": "retry", "attempt": attempt, "delay": delay},
                )
                if on_retry:
                    on_retry(e, attempt)
                time.sleep(delay)


def retry_with_backoff(
    policy: Optional[RetryPolicy] = None,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    **policy_options: Any,
) -> Callable:
    """
    Decorator form of RetryPolicy.call.

    Either pass a policy or the RetryPolicy fields as keyword arguments:

        @retry_with_backoff(max_attempts=5, base_delay=0.5)
        def fetch_quote(symbol): ...
    """
    policy = policy or RetryPolicy(**policy_options)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return policy.call(func, *args, on_retry=on_retry, **kwargs)

        return wrapper
    return decorator
