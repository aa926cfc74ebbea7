"""In-memory TTL cache whose key namespace is versioned."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


@dataclass(slots=True)
class CacheEntry:
    """A stored value together with its absolute expiry deadline."""

    key: str
    value: Any
    expires_at: float


class VersionedCacheStore:
    """Key/value store namespaced by a configuration fingerprint and a generation.

    Every ``get``/``set`` is resolved against :meth:`current_prefix` at call
    time unless an explicit ``prefix`` is given. Invalidation only changes the
    prefix, so previously written entries become unreachable and are dropped
    once their TTL passes. A refresh passes the prefix it captured when it
    started, so its late writes never land in a newer namespace.
    """

    def __init__(
        self,
        fingerprint: Callable[[], str],
        *,
        namespace: str = "series_cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fingerprint = fingerprint
        self._namespace = namespace
        self._clock = clock
        self._generation = 0
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def current_prefix(self) -> str:
        return f"{self._namespace}_{self._fingerprint()}_v{self._generation}_"

    def bump_generation(self) -> int:
        """Move every subsequent read and write into a fresh namespace."""

        self._generation += 1
        logger.info("Cache generation incremented to %s", self._generation)
        return self._generation

    def set(
        self,
        key: str,
        value: Any,
        ttl: timedelta = DEFAULT_TTL,
        *,
        prefix: str | None = None,
    ) -> None:
        full_key = f"{prefix or self.current_prefix()}{key}"
        expires_at = self._clock() + ttl.total_seconds()
        with self._lock:
            self._entries[full_key] = CacheEntry(full_key, value, expires_at)

    def get(self, key: str, default: Any = None, *, prefix: str | None = None) -> Any:
        full_key = f"{prefix or self.current_prefix()}{key}"
        with self._lock:
            entry = self._entries.get(full_key)
            if entry is None:
                return default
            if entry.expires_at <= self._clock():
                del self._entries[full_key]
                return default
            return entry.value

    def contains(self, key: str, *, prefix: str | None = None) -> bool:
        missing = object()
        return self.get(key, missing, prefix=prefix) is not missing

    def purge_expired(self) -> int:
        """Drop entries whose TTL has elapsed, in any namespace."""

        now = self._clock()
        with self._lock:
            expired = [
                key for key, entry in self._entries.items() if entry.expires_at <= now
            ]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Purged %s expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
