"""Small thread-safe LRU cache with per-entry expiry.

Used by the People API adapter so that resolving "Sarah" to an email
address twice in a conversation costs one request, not two.  Entries
expire after ``ttl_seconds`` and the least-recently-used entry is evicted
once ``max_entries`` is reached.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 512
DEFAULT_TTL_SECONDS = 15 * 60

_MISSING = object()


class TTLCache:
    """LRU cache whose entries also expire after a fixed lifetime."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        # key -> (value, expires_at)
        self._store: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for *key* (promoting it) or *default*."""
        with self._lock:
            entry = self._store.get(key, _MISSING)
            if entry is _MISSING:
                return default
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._store[key]
                logger.debug("Cache: expired %s", key)
                return default
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._store.pop(key, None)
            while len(self._store) >= self._max_entries:
                evicted, _ = self._store.popitem(last=False)
                logger.debug("Cache: evicted %s", evicted)
            self._store[key] = (value, self._clock() + self._ttl)

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING
