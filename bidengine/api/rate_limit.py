"""
Sliding-window rate limiting for API requests.

Keys are (subject, action): the authenticated user id, or "ip:<addr>"
when the request carries no user. Keys with no request left in their
window are swept periodically.
"""

import math
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from bidengine.utils.logger import get_logger

logger = get_logger("api.rate_limit")

DEFAULT_SWEEP_INTERVAL = 60.0


class RateLimiter:
    """In-memory sliding-window rate limiter"""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    ):
        self.clock = clock
        self.sweep_interval = sweep_interval
        self._requests: Dict[Tuple[str, str], List[float]] = {}  # (subject, action) -> [timestamp, ...]
        self._windows: Dict[Tuple[str, str], float] = {}  # (subject, action) -> window_seconds
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Number of (subject, action) keys currently tracked."""
        with self._lock:
            return len(self._requests)

    def is_rate_limited(
        self,
        subject: str,
        action: str = "general",
        max_requests: int = 10,
        window_seconds: float = 10.0,
    ) -> Tuple[bool, Optional[int]]:
        """
        Check and record one request.

        Args:
            subject: User id or "ip:<addr>"
            action: Action being performed
            max_requests: Maximum requests allowed in window
            window_seconds: Time window in seconds

        Returns:
            Tuple of (is_limited, seconds_until_reset)
        """
        now = self.clock()
        cutoff = now - window_seconds
        key = (subject, action)

        with self._lock:
            self._sweep(now)
            self._windows[key] = window_seconds
            recent = [t for t in self._requests.get(key, []) if t > cutoff]

            if len(recent) >= max_requests:
                self._requests[key] = recent
                reset_time = math.ceil(min(recent) + window_seconds - now)
                logger.warning(f"Rate limit exceeded for {subject} on {action}")
                return True, max(1, reset_time)

            recent.append(now)
            self._requests[key] = recent
            return False, None

    def _sweep(self, now: float):
        """Drop keys whose newest request has left its window. Caller holds the lock."""
        if now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now

        stale = [
            key
            for key, stamps in self._requests.items()
            if not stamps or stamps[-1] <= now - self._windows.get(key, 0.0)
        ]
        for key in stale:
            del self._requests[key]
            self._windows.pop(key, None)

        if stale:
            logger.debug(f"Rate limiter swept {len(stale)} idle keys")

    def reset(self, subject: Optional[str] = None):
        """Forget recorded requests for one subject, or everyone."""
        with self._lock:
            if subject is None:
                self._requests.clear()
                self._windows.clear()
                return
            for key in [k for k in self._requests if k[0] == subject]:
                del self._requests[key]
                self._windows.pop(key, None)
