"""Retry with exponential backoff for flaky credential and connection calls."""

import random
import time
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Optional, Sequence, Type

from .exceptions import GatewayError
from .logging_config import get_logger


logger = get_logger(__name__)

# Substrings of driver and SDK messages that indicate a transient condition
TRANSIENT_MESSAGES = (
    "timeout",
    "timed out",
    "connection",
    "temporarily",
    "throttl",
    "service unavailable",
)


@dataclass
class RetryConfig:
    """How many times to call, and how long to wait in between."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.1

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be non-negative")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.exponential_base <= 1:
            raise ValueError("exponential_base must be > 1")
        if not 0 <= self.jitter_range <= 1:
            raise ValueError("jitter_range must be between 0 and 1")


class ExponentialBackoff:
    """Delay schedule: initial_delay * base^(n-1) before the n-th retry, capped at max_delay."""

    def __init__(self, config: RetryConfig):
        self.config = config
        self.retries = 0

    @property
    def attempts(self) -> int:
        return self.retries + 1

    def can_retry(self) -> bool:
        return self.attempts < self.config.max_attempts

    def next_delay(self) -> float:
        delay = min(
            self.config.initial_delay * self.config.exponential_base ** self.retries,
            self.config.max_delay
        )
        if self.config.jitter:
            spread = delay * self.config.jitter_range
            delay = max(0.0, delay + random.uniform(-spread, spread))
        self.retries += 1
        return delay


def is_retryable_error(error: Exception) -> bool:
    """GatewayErrors say so themselves; anything else is judged by its message."""
    if isinstance(error, GatewayError):
        return error.retryable
    message = str(error).lower()
    return any(fragment in message for fragment in TRANSIENT_MESSAGES)


def retry_with_backoff(
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Optional[Sequence[Type[Exception]]] = None,
    sleep: Callable[[float], None] = time.sleep
):
    """
    Decorator retrying a function on transient failures.

    Args:
        config: Retry configuration; defaults to RetryConfig()
        retryable_exceptions: Exception types worth retrying; when omitted,
            is_retryable_error decides
        sleep: Function used to wait between attempts
    """
    config = config or RetryConfig()
    retry_on: Optional[tuple] = tuple(retryable_exceptions) if retryable_exceptions else None

    def should_retry(error: Exception) -> bool:
        return isinstance(error, retry_on) if retry_on else is_retryable_error(error)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            backoff = ExponentialBackoff(config)
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not should_retry(e) or not backoff.can_retry():
                        raise
                    delay = backoff.next_delay()
                    logger.warning(
                        "Retrying after transient error",
                        function=func.__name__,
                        attempt=backoff.attempts,
                        max_attempts=config.max_attempts,
                        delay=round(delay, 3),
                        error_type=type(e).__name__
                    )
                    if delay > 0:
                        sleep(delay)

        return wrapper
    return decorator
