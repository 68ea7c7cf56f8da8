"""Per-caller request rate limiting.

Sliding window log kept in process memory: each key holds the timestamps of
its accepted requests within the window. Only one process serves a
knowledge base, so no shared store is needed.
"""

import math
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

from kb_assistant.utils.errors import RateLimitError
from kb_assistant.utils.logging import get_logger

logger = get_logger("rate_limit_service")


class RateLimitService:
    """Sliding-window request limits keyed by caller and route group."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def check_rate_limit(
        self,
        key: str,
        max_attempts: int,
        window_seconds: int,
    ) -> Tuple[bool, Optional[int]]:
        """
        Record an attempt for ``key`` if the window has room.

        Args:
            key: Unique key for rate limiting (e.g. ``chat:<caller id>``)
            max_attempts: Maximum number of attempts allowed per window
            window_seconds: Window length in seconds

        Returns:
            Tuple of (is_allowed, retry_after_seconds). Rejected attempts are
            not recorded, so a caller that keeps retrying is not locked out
            past the window.
        """
        now = self._clock()
        window_start = now - window_seconds
        with self._lock:
            attempts = self._attempts.setdefault(key, deque())
            while attempts and attempts[0] <= window_start:
                attempts.popleft()

            if len(attempts) >= max_attempts:
                retry_after = max(1, math.ceil(attempts[0] + window_seconds - now))
                return False, retry_after

            attempts.append(now)
            return True, None

    def enforce(
        self,
        key: str,
        max_attempts: int,
        window_seconds: int,
        message: str = "Too many requests, please try again later",
    ) -> None:
        """Like ``check_rate_limit`` but raises ``RateLimitError`` when exceeded."""
        allowed, retry_after = self.check_rate_limit(key, max_attempts, window_seconds)
        if not allowed:
            logger.warning(f"Rate limit exceeded for {key}: {max_attempts}/{window_seconds}s")
            raise RateLimitError(message, limit=max_attempts, retry_after=retry_after)

    def reset_rate_limit(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)

