"""
TTL cache used by the read-mostly engines.

Each engine owns its own cache instance (commission settings: 5 minutes,
risk summaries: 30 seconds). Entries are stamped with the cache's clock,
which tests replace to control expiry deterministically.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

_MISSING = object()


@dataclass
class TTLCache:
    """
    Thread-safe key -> value map whose entries expire after `ttl` seconds.

    Attributes:
        ttl: Entry lifetime in seconds
        clock: Monotonic time source
    """
    ttl: float
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[Hashable, Tuple[float, Any]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the cached value, or default when missing or expired."""
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                return default
            stored_at, value = entry
            if self.clock() - stored_at >= self.ttl:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self.clock(), value)

    def contains(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class KeyedLocks:
    """
    One re-entrant lock per aggregate key (auction id, payout id).

    Serializes the multi-step settlement sequence for a given aggregate
    inside this process.
    """

    def __init__(self):
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)
