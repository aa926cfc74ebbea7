"""Short-term memory of request targets that keep failing."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

logger = logging.getLogger(__name__)

MAX_SAMPLE_TARGETS = 10


@dataclass(slots=True)
class FailureRecord:
    target_key: str
    target: str
    details: str
    expires_at: float


@dataclass(slots=True)
class FailureStats:
    count: int
    sample_targets: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, object]:
        return {"count": self.count, "sampleTargets": list(self.sample_targets)}


class FailureTracker:
    """Remembers exhausted targets so later refreshes skip them until expiry."""

    def __init__(
        self,
        ttl: timedelta = timedelta(hours=24),
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl
        self._clock = clock
        self._records: dict[str, FailureRecord] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def configure(self, ttl: timedelta) -> None:
        """Apply a new expiry window to failures recorded from now on."""

        self._ttl = ttl

    @staticmethod
    def target_key(target: str) -> str:
        return hashlib.sha256(target.encode("utf-8")).hexdigest()

    def is_known_failure(self, target: str) -> bool:
        key = self.target_key(target)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return False
            if record.expires_at <= self._clock():
                del self._records[key]
                return False
            return True

    def record_failure(self, target: str, details: str = "") -> None:
        key = self.target_key(target)
        expires_at = self._clock() + self._ttl.total_seconds()
        with self._lock:
            self._records[key] = FailureRecord(key, target, details, expires_at)
        logger.debug("Recorded persistent failure for %s: %s", target, details)

    def stats(self) -> FailureStats:
        now = self._clock()
        with self._lock:
            for key in [k for k, r in self._records.items() if r.expires_at <= now]:
                del self._records[key]
            records = list(self._records.values())
        return FailureStats(
            count=len(records),
            sample_targets=[record.target for record in records[:MAX_SAMPLE_TARGETS]],
        )

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
