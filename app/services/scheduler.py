"""Periodic trigger that starts a refresh once the configured interval elapses."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from ..config import ConfigurationStore
from .refresh_guard import ConcurrencyGuard

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshScheduler:
    def __init__(
        self,
        guard: ConcurrencyGuard,
        config_store: ConfigurationStore,
        *,
        now: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._guard = guard
        self._config = config_store
        self._now = now
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    def is_due(self) -> bool:
        if not self._guard.is_enabled():
            return False
        settings = self._config.current
        completed_at = self._guard.state.completed_at
        if completed_at is None:
            return True
        interval = settings.refresh_interval_minutes
        if interval <= 0:
            interval = DEFAULT_INTERVAL_MINUTES
        return self._now() - completed_at >= timedelta(minutes=interval)

    def tick(self) -> bool:
        """Start a refresh when one is due. Returns whether it was started."""

        if not self.is_due():
            return False
        logger.info("Scheduled catalog refresh is due")
        return self._guard.try_start_refresh()

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        while True:
            try:
                self.tick()
            except Exception as exc:
                logger.exception("Scheduled refresh check failed: %s", exc)
            await self._sleep(self._config.current.scheduler_check_seconds)
