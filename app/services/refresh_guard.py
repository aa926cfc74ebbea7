"""Single-flight control of background catalog refreshes."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from operator import attrgetter
from typing import Any, Callable, Mapping

from ..config import ConfigurationChange, ConfigurationStore, Settings
from .cancellation import CancellationToken
from .catalog_cache import CatalogCache
from .catalog_refresh import RefreshPhase, RefreshPipeline, RefreshState

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RefreshHandle:
    """A running refresh, tagged with the generation that started it."""

    generation: int
    token: CancellationToken
    task: asyncio.Task[None] | None = None


class ConcurrencyGuard:
    """Starts, cancels and restarts refreshes so that at most one runs at a time.

    Every phase transition happens under ``_lock``. The lock is never held
    across an ``await``. One guard exists per catalog; ``enabled`` and
    ``affected_by`` tell it which settings switch its catalog on and which
    configuration changes invalidate what it has cached.
    """

    def __init__(
        self,
        orchestrator: RefreshPipeline,
        config_store: ConfigurationStore,
        catalog_cache: CatalogCache,
        *,
        name: str = "series",
        enabled: Callable[[Settings], bool] = attrgetter("enable_caching"),
        affected_by: Callable[[ConfigurationChange], bool] = attrgetter("cache_relevant"),
    ):
        self._orchestrator = orchestrator
        self._config = config_store
        self._cache = catalog_cache
        self._name = name
        self._enabled = enabled
        self._affected_by = affected_by
        self._lock = threading.Lock()
        self._handle: RefreshHandle | None = None
        self._generation = 0

    @property
    def state(self) -> RefreshState:
        return self._orchestrator.state

    @property
    def orchestrator(self) -> RefreshPipeline:
        return self._orchestrator

    @property
    def current_handle(self) -> RefreshHandle | None:
        return self._handle

    def is_enabled(self) -> bool:
        return self._enabled(self._config.current)

    def try_start_refresh(self) -> bool:
        """Start a background refresh unless one is already running."""

        if not self.is_enabled():
            logger.info("%s caching is disabled, not starting a refresh", self._name)
            return False
        state = self.state
        with self._lock:
            if state.phase is not RefreshPhase.IDLE:
                logger.info(
                    "%s refresh already %s, ignoring start request",
                    self._name,
                    state.phase.value,
                )
                return False
            state.phase = RefreshPhase.REFRESHING
            state.started_at = datetime.now(timezone.utc)
            state.report(progress=0.0, status="Starting...")
            self._generation += 1
            handle = RefreshHandle(self._generation, CancellationToken())
            self._handle = handle
        handle.task = asyncio.create_task(self._run(handle))
        logger.info("Started %s refresh #%s", self._name, handle.generation)
        return True

    async def _run(self, handle: RefreshHandle) -> None:
        try:
            await self._orchestrator.refresh(handle.token)
        except Exception:
            logger.exception(
                "Background %s refresh #%s failed", self._name, handle.generation
            )
        finally:
            with self._lock:
                if self._handle is handle:
                    self.state.phase = RefreshPhase.IDLE

    def cancel_refresh(self) -> bool:
        """Signal the running refresh to stop at its next checkpoint."""

        handle = self._handle
        if handle is None:
            return False
        with self._lock:
            if (
                self._handle is not handle
                or handle.generation != self._generation
                or self.state.phase is RefreshPhase.IDLE
            ):
                return False
            handle.token.cancel()
            self.state.phase = RefreshPhase.CANCELLING
            self.state.report(status="Cancelling...")
        logger.info(
            "Cancellation requested for %s refresh #%s", self._name, handle.generation
        )
        return True

    def invalidate(self) -> int:
        """Make every cached entry unreachable and return the new generation."""

        generation = self._cache.store.bump_generation()
        state = self.state
        state.report(progress=0.0, status="Cache invalidated")
        state.completed_at = None
        logger.info("%s cache invalidated, now at generation %s", self._name, generation)
        return generation

    async def wait_for_refresh(self, timeout: float | None = None) -> bool:
        """Wait for the current refresh task, returning ``False`` on timeout."""

        handle = self._handle
        if handle is None or handle.task is None or handle.task.done():
            return True
        _, pending = await asyncio.wait({handle.task}, timeout=timeout)
        return not pending

    async def apply_configuration(self, changes: Mapping[str, Any]) -> bool:
        """Apply ``changes`` and restart the refresh when cached data is affected.

        Returns whether a new refresh was started. Raises
        ``pydantic.ValidationError`` when the resulting settings are invalid.
        """

        return await self.restart_for(self._config.update(changes))

    async def restart_for(self, change: ConfigurationChange) -> bool:
        """Cancel and restart the refresh if ``change`` affects this catalog.

        The running refresh keeps writing under the namespace it started
        with, so nothing it fetched with the old settings becomes visible
        under the new fingerprint.
        """

        if not self._affected_by(change):
            logger.info("Configuration updated, %s cache fingerprint unchanged", self._name)
            return False

        logger.info(
            "%s cache configuration changed, restarting refresh (now %s)",
            self._name,
            self._cache.store.current_prefix(),
        )
        if self.cancel_refresh():
            grace = change.settings.config_restart_grace_seconds
            if not await self.wait_for_refresh(grace):
                logger.warning(
                    "Previous %s refresh did not stop within %.1fs", self._name, grace
                )
        return self.try_start_refresh()

    def status(self) -> dict[str, Any]:
        return self.state.to_payload(is_cache_populated=self._cache.is_populated())

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel any running refresh and wait for background work to settle."""

        handle = self._handle
        if handle is not None and handle.task is not None and not handle.task.done():
            handle.token.cancel()
            if not await self.wait_for_refresh(timeout):
                handle.task.cancel()
                await asyncio.gather(handle.task, return_exceptions=True)
        await self._orchestrator.drain()
