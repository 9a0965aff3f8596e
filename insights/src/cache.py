"""Result cache capability for memoising analytics by filter set.

The service receives a cache explicitly instead of relying on
module-level state. Entries expire after a fixed TTL; staleness within
the TTL is accepted because recommendations are advisory.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from cachetools import TTLCache

logger = logging.getLogger(__name__)


@runtime_checkable
class ResultCache(Protocol):
    """Protocol for key/value caches with a fixed entry lifetime."""

    def get(self, key: str) -> Any | None:
        """Return the cached value for *key*, or None when absent or expired."""
        ...

    def put(self, key: str, value: Any) -> None:
        """Store *value* under *key*."""
        ...

    def clear(self) -> None:
        """Drop every entry."""
        ...


class NullCache:
    """Cache that never stores anything."""

    def get(self, key: str) -> Any | None:
        return None

    def put(self, key: str, value: Any) -> None:
        return None

    def clear(self) -> None:
        return None


class InMemoryResultCache:
    """Thread-safe in-process TTL cache backed by ``cachetools.TTLCache``.

    Args:
        ttl_seconds: Entry lifetime; non-positive values disable storing.
        max_entries: Entries kept before the least recently used is evicted.
        clock: Monotonic time source in seconds (injectable for tests).

    Example::

        cache = InMemoryResultCache(ttl_seconds=600)
        cache.put("recommended:days=7", items)
        cache.get("recommended:days=7")
    """

    def __init__(
        self,
        ttl_seconds: float = 600,
        max_entries: int = 1024,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._entries: TTLCache = TTLCache(
            maxsize=max_entries,
            ttl=max(ttl_seconds, 0),
            timer=clock or time.monotonic,
        )
        # TTLCache is not thread-safe; routers call in from a threadpool.
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value: Any) -> None:
        if self._ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = value

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()
        logger.debug("Result cache cleared")
