"""Thread-safe in-memory LRU cache with per-entry TTL and a byte-size ceiling.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Size tracking** via ``json.dumps`` byte length of the stored value.
• **Expiry** is lazy: an entry past its TTL is dropped on the next read.
• **Pattern invalidation** (``fnmatch`` globs such as ``week:42:*``) so a
  booking write can clear every aggregate it affects in one call.
• Strictly best-effort: callers must treat a miss (or a stale hit inside the
  TTL) as normal.  Write paths *invalidate*, they never update in place.

Usage in BookingService
───────────────────────
>>> cache = TTLCache(max_bytes=20 * 1024 * 1024)
>>> cache.set("week:1:2026-10-12", [reservation_dict], ttl=300)
>>> cache.get("week:1:2026-10-12")
[reservation_dict]
>>> cache.invalidate_pattern("week:1:*")
1
"""

from __future__ import annotations

import fnmatch
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# Default ceiling: 20 MB
DEFAULT_MAX_BYTES = 20 * 1024 * 1024


class TTLCache:
    """Least-Recently-Used cache bounded by total estimated byte size."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_bytes = max_bytes
        self._current_bytes = 0
        self._clock = clock
        # key → (value, estimated_size_bytes, expires_at | None)
        self._store: OrderedDict[str, tuple[Any, int, float | None]] = OrderedDict()
        self._lock = threading.Lock()

    # ── Size estimation ──────────────────────────────────────────────

    @staticmethod
    def _estimate_bytes(value: Any) -> int:
        """Return the estimated size of *value* in bytes.

        Uses ``json.dumps`` length for JSON-serialisable objects and falls
        back to ``str()`` length for anything else.
        """
        try:
            return len(json.dumps(value, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(value).encode("utf-8"))

    def _drop(self, key: str) -> None:
        _, size, _ = self._store.pop(key)
        self._current_bytes -= size

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None``."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, _, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                self._drop(key)
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Insert or overwrite *key*.  Evicts LRU entries if needed."""
        size = self._estimate_bytes(value)

        # Don't cache if a single entry exceeds the limit
        if size > self._max_bytes:
            logger.debug(
                "Cache: skipping key %s (size %d > max %d)",
                key, size, self._max_bytes,
            )
            return

        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            if key in self._store:
                self._drop(key)

            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size, _) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Cache: evicted %s (%d bytes)", evicted_key, evicted_size)

            self._store[key] = (value, size, expires_at)
            self._current_bytes += size

    def delete(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            if key in self._store:
                self._drop(key)
                return True
            return False

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key matching the glob *pattern*.  Returns count removed."""
        with self._lock:
            keys = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            for key in keys:
                self._drop(key)
        if keys:
            logger.debug("Cache: invalidated %d key(s) matching %s", len(keys), pattern)
        return len(keys)

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        """Total estimated bytes currently stored."""
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        """Number of entries currently stored (expired ones included until read)."""
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a live key is present *without* promoting it."""
        entry = self._store.get(key)
        if entry is None:
            return False
        expires_at = entry[2]
        return expires_at is None or self._clock() < expires_at
