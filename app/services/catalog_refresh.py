"""Eager refresh pipelines that mirror the upstream catalogs into the cache."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

from ..config import ConfigurationStore, Settings
from ..models import Category, Series
from .artwork import ArtworkResolver, parse_title_overrides
from .cancellation import CancellationToken, RefreshCancelled
from .catalog_cache import CatalogCache
from .retry import RetryExecutor, RetryPolicy
from .xtream import XtreamClient

logger = logging.getLogger(__name__)

CATEGORIES_PROGRESS = 0.05
SERIES_LISTS_PROGRESS = 0.20
SERIES_INFO_PROGRESS = 0.70
ARTWORK_PROGRESS = 0.95


class RefreshPhase(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    CANCELLING = "cancelling"


@dataclass(slots=True)
class RefreshCounts:
    categories: int = 0
    series: int = 0
    seasons: int = 0
    episodes: int = 0
    series_failed: int = 0
    artwork_found: int = 0
    artwork_missing: int = 0

    def to_payload(self) -> dict[str, int]:
        return {
            "categories": self.categories,
            "series": self.series,
            "seasons": self.seasons,
            "episodes": self.episodes,
            "seriesFailed": self.series_failed,
            "artworkFound": self.artwork_found,
            "artworkMissing": self.artwork_missing,
        }


@dataclass(slots=True)
class VodRefreshCounts:
    categories: int = 0
    movies: int = 0
    artwork_found: int = 0
    artwork_missing: int = 0

    def to_payload(self) -> dict[str, int]:
        return {
            "categories": self.categories,
            "movies": self.movies,
            "artworkFound": self.artwork_found,
            "artworkMissing": self.artwork_missing,
        }


@dataclass(slots=True)
class RefreshState:
    """Progress of the current or most recent refresh.

    ``phase`` is only changed by the concurrency guard while it holds its
    lock. The orchestrator publishes ``progress``, ``status`` and ``counts``.
    """

    phase: RefreshPhase = RefreshPhase.IDLE
    progress: float = 0.0
    status: str = "Idle"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    counts: RefreshCounts | VodRefreshCounts = field(default_factory=RefreshCounts)

    @property
    def is_refreshing(self) -> bool:
        return self.phase is not RefreshPhase.IDLE

    def report(self, progress: float | None = None, status: str | None = None) -> None:
        if progress is not None:
            self.progress = min(1.0, max(0.0, progress))
        if status is not None:
            self.status = status

    def to_payload(self, *, is_cache_populated: bool) -> dict[str, Any]:
        return {
            "isRefreshing": self.is_refreshing,
            "progress": round(self.progress, 4),
            "status": self.status,
            "startTime": self.started_at.isoformat() if self.started_at else None,
            "completeTime": self.completed_at.isoformat() if self.completed_at else None,
            "isCachePopulated": is_cache_populated,
            "counts": self.counts.to_payload(),
        }


@dataclass(slots=True)
class RefreshOutcome:
    cancelled: bool
    counts: RefreshCounts | VodRefreshCounts

    @property
    def completed(self) -> bool:
        return not self.cancelled


class RequestThrottle:
    """Spaces out request starts across every worker of a refresh pass."""

    def __init__(
        self,
        min_delay: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._min_delay = max(0.0, min_delay)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request: float | None = None

    async def wait(self, token: CancellationToken | None = None) -> None:
        if self._min_delay <= 0:
            return
        async with self._lock:
            if self._last_request is not None:
                remaining = self._last_request + self._min_delay - self._clock()
                if remaining > 0:
                    if self._sleep is not None:
                        await self._sleep(remaining)
                    elif token is not None:
                        await token.sleep(remaining)
                    else:
                        await asyncio.sleep(remaining)
            self._last_request = self._clock()


@dataclass(slots=True)
class RefreshPass:
    """Everything captured at the start of one refresh pass.

    ``cache`` is pinned to the namespace that was current when the pass
    began, so a configuration change or invalidation during the pass never
    receives data fetched under the previous settings.
    """

    settings: Settings
    token: CancellationToken
    policy: RetryPolicy
    throttle: RequestThrottle
    counts: RefreshCounts | VodRefreshCounts
    cache: CatalogCache


class RefreshPipeline:
    """Shared plumbing for the series and VOD refresh pipelines.

    Subclasses implement :meth:`refresh` and publish progress into ``state``.
    """

    label = "catalog"

    def __init__(
        self,
        config_store: ConfigurationStore,
        xtream: XtreamClient,
        catalog_cache: CatalogCache,
        executor: RetryExecutor,
        state: RefreshState,
        *,
        artwork: ArtworkResolver | None = None,
        on_populated: Callable[[], Awaitable[Any]] | None = None,
        throttle_sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._config = config_store
        self._xtream = xtream
        self._cache = catalog_cache
        self._executor = executor
        self._state = state
        self._artwork = artwork
        self._on_populated = on_populated
        self._throttle_sleep = throttle_sleep
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> RefreshState:
        return self._state

    async def refresh(self, token: CancellationToken) -> RefreshOutcome:
        raise NotImplementedError

    async def drain(self) -> None:
        """Wait for background tasks spawned by earlier refreshes."""

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _begin(
        self, token: CancellationToken, counts: RefreshCounts | VodRefreshCounts
    ) -> RefreshPass:
        settings = self._config.current
        self._xtream.configure(settings)
        self._cache.ttl = timedelta(hours=settings.cache_ttl_hours)
        self._executor.failure_tracker.configure(
            timedelta(hours=settings.failure_cache_ttl_hours)
        )
        purged = self._cache.store.purge_expired()
        cache = self._cache.pinned()
        self._state.counts = counts
        self._state.report(progress=0.0, status="Starting...")
        logger.info(
            "Starting %s refresh (namespace %s, parallelism %s, purged %s)",
            self.label,
            cache.prefix,
            settings.refresh_parallelism,
            purged,
        )
        return RefreshPass(
            settings=settings,
            token=token,
            policy=RetryPolicy.from_settings(settings),
            throttle=RequestThrottle(
                settings.min_request_delay_ms / 1000, sleep=self._throttle_sleep
            ),
            counts=counts,
            cache=cache,
        )

    async def _fetch(
        self, run: RefreshPass, target: str, operation: Callable[[], Awaitable[Any]]
    ):
        async def attempt() -> Any:
            await run.throttle.wait(run.token)
            return await operation()

        return await self._executor.execute_with_retry(
            target,
            attempt,
            max_attempts=run.policy.max_attempts,
            initial_delay=run.policy.initial_delay,
            token=run.token,
            raise_on_failure=run.policy.raise_on_failure,
        )

    async def _load_categories(
        self,
        run: RefreshPass,
        action: str,
        operation: Callable[[], Awaitable[list[Category] | None]],
        selected: Iterable[int],
    ) -> list[Category]:
        run.token.raise_if_cancelled()
        categories = await self._fetch(run, self._xtream.target(action), operation)
        if categories is None:
            logger.warning("%s categories unavailable, continuing with none", self.label)
            categories = []
        else:
            chosen = set(selected)
            if chosen:
                categories = [c for c in categories if c.category_id in chosen]
            run.cache.set_categories(categories)
        run.counts.categories = len(categories)
        self._state.report(progress=CATEGORIES_PROGRESS)
        return categories

    def _log_failures(self) -> None:
        failures = self._executor.failure_tracker.stats()
        if failures.count:
            logger.warning(
                "%s request target(s) are marked as failing for %s hours: %s",
                failures.count,
                int(self._executor.failure_tracker.ttl.total_seconds() // 3600),
                ", ".join(failures.sample_targets),
            )

    def schedule_populate(self) -> asyncio.Task[Any] | None:
        """Run the populated hook in the background, keeping a reference to it."""

        if self._on_populated is None:
            return None
        task = asyncio.create_task(self._on_populated())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task


class RefreshOrchestrator(RefreshPipeline):
    """Runs the four series refresh phases and publishes progress into ``state``."""

    label = "series"

    async def refresh(self, token: CancellationToken) -> RefreshOutcome:
        """Refresh the whole catalog, returning normally when cancelled."""

        run = self._begin(token, RefreshCounts())
        try:
            categories = await self._load_categories(
                run,
                "get_series_categories",
                self._xtream.get_categories,
                run.settings.series_categories,
            )
            series = await self._load_series_lists(run, categories)
            await self._load_series_info(run, series)
            if self._artwork is not None and run.settings.enable_artwork:
                await self._resolve_artwork(run, series, self._artwork)
            elif run.settings.enable_artwork:
                logger.info("Artwork enabled but no metadata provider is configured")
        except RefreshCancelled:
            self._state.report(status="Cancelled")
            logger.info("Catalog refresh cancelled")
            return RefreshOutcome(cancelled=True, counts=run.counts)
        except Exception:
            self._state.report(status="Failed or cancelled")
            logger.exception("Catalog refresh failed")
            raise

        self._complete(run)
        return RefreshOutcome(cancelled=False, counts=run.counts)

    async def _load_series_lists(
        self, run: RefreshPass, categories: list[Category]
    ) -> list[Series]:
        collected: dict[int, Series] = {}
        total = len(categories)
        span = SERIES_LISTS_PROGRESS - CATEGORIES_PROGRESS
        for index, category in enumerate(categories, start=1):
            run.token.raise_if_cancelled()
            category_id = category.category_id
            series_list = await self._fetch(
                run,
                self._xtream.target("get_series", category_id=category_id),
                lambda: self._xtream.get_series_by_category(category_id),
            )
            if series_list is not None:
                run.cache.set_series_list(category_id, series_list)
                for series in series_list:
                    if series.series_id in collected:
                        continue
                    if series.category_id is None:
                        series = series.model_copy(update={"category_id": category_id})
                    collected[series.series_id] = series
            self._state.report(progress=CATEGORIES_PROGRESS + span * index / total)
        run.counts.series = len(collected)
        self._state.report(progress=SERIES_LISTS_PROGRESS)
        return list(collected.values())

    async def _load_series_info(self, run: RefreshPass, series: list[Series]) -> None:
        if not series:
            return
        with_artwork = self._artwork is not None and run.settings.enable_artwork
        end = SERIES_INFO_PROGRESS if with_artwork else ARTWORK_PROGRESS
        span = end - SERIES_LISTS_PROGRESS
        total = len(series)
        done = 0
        semaphore = asyncio.Semaphore(max(1, min(10, run.settings.refresh_parallelism)))

        async def worker(item: Series) -> None:
            nonlocal done
            async with semaphore:
                run.token.raise_if_cancelled()
                await self._cache_series_info(run, item)
            done += 1
            self._state.report(progress=SERIES_LISTS_PROGRESS + span * done / total)

        results = await asyncio.gather(
            *(worker(item) for item in series), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        run.token.raise_if_cancelled()

    async def _cache_series_info(self, run: RefreshPass, series: Series) -> None:
        series_id = series.series_id
        try:
            info = await self._fetch(
                run,
                self._xtream.target("get_series_info", series_id=series_id),
                lambda: self._xtream.get_series_info(series_id),
            )
        except RefreshCancelled:
            raise
        except Exception as exc:
            logger.warning("Failed to refresh series %s (%s): %s", series_id, series.name, exc)
            run.counts.series_failed += 1
            return
        if info is None:
            run.counts.series_failed += 1
            return

        run.cache.set_series_info(series_id, info)
        season_numbers = info.season_numbers()
        for number in season_numbers:
            run.cache.set_season(series_id, number, info.season(number))
            run.cache.set_episodes(series_id, number, info.episodes_for(number))
        run.counts.seasons += len(season_numbers)
        run.counts.episodes += info.episode_count()

    async def _resolve_artwork(
        self, run: RefreshPass, series: list[Series], resolver: ArtworkResolver
    ) -> None:
        overrides = parse_title_overrides(run.settings.title_overrides)
        if overrides:
            logger.info("Loaded %s title override(s)", len(overrides))
        total = len(series)
        span = ARTWORK_PROGRESS - SERIES_INFO_PROGRESS
        for index, item in enumerate(series, start=1):
            run.token.raise_if_cancelled()
            image_url = await resolver.resolve(
                item.series_id, item.name, overrides, cache=run.cache
            )
            if image_url:
                run.counts.artwork_found += 1
            else:
                run.counts.artwork_missing += 1
            self._state.report(progress=SERIES_INFO_PROGRESS + span * index / total)

    def _complete(self, run: RefreshPass) -> None:
        counts = run.counts
        self._state.completed_at = datetime.now(timezone.utc)
        self._state.report(progress=1.0, status=f"Completed: {counts.series} series")
        logger.info(
            "Catalog refresh completed: %s categories, %s series, %s seasons, "
            "%s episodes, %s series failed, artwork %s found / %s missing",
            counts.categories,
            counts.series,
            counts.seasons,
            counts.episodes,
            counts.series_failed,
            counts.artwork_found,
            counts.artwork_missing,
        )
        self._log_failures()
        self.schedule_populate()
