"""Per-caller cap on concurrently open chat streams."""

import threading
from typing import Dict

from kb_assistant.utils.errors import RateLimitError
from kb_assistant.utils.logging import get_logger

logger = get_logger("stream_limiter")


class StreamLimiter:
    """Counts open streams per caller; excess attempts are rejected, never queued."""

    def __init__(self, max_concurrent: int = 5):
        self.max_concurrent = max_concurrent
        self._open: Dict[str, int] = {}
        self._lock = threading.Lock()

    def try_acquire(self, caller_id: str) -> bool:
        with self._lock:
            current = self._open.get(caller_id, 0)
            if current >= self.max_concurrent:
                return False
            self._open[caller_id] = current + 1
            return True

    def acquire(self, caller_id: str) -> None:
        """Acquire a slot or raise ``RateLimitError``."""
        if not self.try_acquire(caller_id):
            logger.warning(f"Concurrent stream limit reached for caller {caller_id}")
            raise RateLimitError(
                "Too many concurrent connections for this API key",
                limit=self.max_concurrent,
            )

    def release(self, caller_id: str) -> None:
        with self._lock:
            current = self._open.get(caller_id, 0)
            if current <= 1:
                self._open.pop(caller_id, None)
            else:
                self._open[caller_id] = current - 1

    def open_streams(self, caller_id: str) -> int:
        with self._lock:
            return self._open.get(caller_id, 0)
