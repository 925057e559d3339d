"""Per-client request throttling over a sliding one-minute window."""

import time
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional, Set

from ..errors import RateLimitError, ErrorContext, get_logger

logger = get_logger(__name__)


class RateLimitExceeded(RateLimitError):
    """A client used up its requests for the current window."""

    def __init__(self, message: str, retry_after: int, client_id: str, context: Optional[ErrorContext] = None):
        super().__init__(message, retry_after, context=context)
        self.client_id = client_id


@dataclass
class RateLimitConfig:
    requests_per_minute: int = 120
    window_size_seconds: int = 60
    whitelisted_clients: Set[str] = field(default_factory=set)


@dataclass
class RateLimitStatus:
    current_count: int
    limit: int
    window_size: int
    retry_after: Optional[int] = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)


class RateLimiter:
    """Keeps the request timestamps of each client that fall inside the window."""

    def __init__(self, config: Optional[RateLimitConfig] = None):
        self.config = config or RateLimitConfig()
        self._seen: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _window(self, client_id: str, now: float) -> Deque[float]:
        stamps = self._seen[client_id]
        horizon = now - self.config.window_size_seconds
        while stamps and stamps[0] <= horizon:
            stamps.popleft()
        return stamps

    def _seconds_until_free(self, stamps: Deque[float], now: float) -> Optional[int]:
        if len(stamps) < self.config.requests_per_minute:
            return None
        return max(1, int(stamps[0] + self.config.window_size_seconds - now) + 1)

    def check(self, client_id: str, current_time: Optional[float] = None) -> None:
        """
        Count one request for the client.

        Raises:
            RateLimitExceeded: If the client has no requests left in the window
        """
        if client_id in self.config.whitelisted_clients:
            return

        now = time.time() if current_time is None else current_time
        with self._lock:
            stamps = self._window(client_id, now)
            retry_after = self._seconds_until_free(stamps, now)
            if retry_after is None:
                stamps.append(now)
                return

        logger.warning("Rate limit exceeded", client_id=client_id, retry_after=retry_after)
        raise RateLimitExceeded(
            f"Rate limit of {self.config.requests_per_minute} requests per minute exceeded",
            retry_after=retry_after,
            client_id=client_id,
            context=ErrorContext(operation="rate_limit_check", resource=client_id)
        )

    def get_status(self, client_id: str, current_time: Optional[float] = None) -> RateLimitStatus:
        now = time.time() if current_time is None else current_time
        with self._lock:
            stamps = self._window(client_id, now)
            return RateLimitStatus(
                current_count=len(stamps),
                limit=self.config.requests_per_minute,
                window_size=self.config.window_size_seconds,
                retry_after=self._seconds_until_free(stamps, now)
            )

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()
