"""Refresh pipeline for the VOD movie catalog."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from ..models import Category, Movie
from .artwork import ArtworkResolver, parse_title_overrides
from .cancellation import CancellationToken, RefreshCancelled
from .catalog_refresh import (
    CATEGORIES_PROGRESS,
    SERIES_LISTS_PROGRESS,
    RefreshOutcome,
    RefreshPass,
    RefreshPipeline,
    VodRefreshCounts,
)

logger = logging.getLogger(__name__)

MOVIE_LISTS_PROGRESS = SERIES_LISTS_PROGRESS
MOVIE_ARTWORK_PROGRESS = 0.90
PROGRESS_LOG_EVERY = 50


class VodRefreshOrchestrator(RefreshPipeline):
    """Caches VOD categories and movie lists, then looks up movie artwork.

    Uses the same retry, throttle and cancellation rules as the series
    pipeline but writes into its own ``vod_cache`` namespace.
    """

    label = "VOD"

    async def refresh(self, token: CancellationToken) -> RefreshOutcome:
        run = self._begin(token, VodRefreshCounts())
        try:
            categories = await self._load_categories(
                run,
                "get_vod_categories",
                self._xtream.get_vod_categories,
                run.settings.vod_categories,
            )
            movies = await self._load_movie_lists(run, categories)
            if self._artwork is not None and run.settings.enable_vod_artwork:
                await self._resolve_artwork(run, movies, self._artwork)
            elif run.settings.enable_vod_artwork:
                logger.info("VOD artwork enabled but no metadata provider is configured")
        except RefreshCancelled:
            self._state.report(status="Cancelled")
            logger.info("VOD refresh cancelled")
            return RefreshOutcome(cancelled=True, counts=run.counts)
        except Exception:
            self._state.report(status="Failed or cancelled")
            logger.exception("VOD refresh failed")
            raise

        self._complete(run, len(categories))
        return RefreshOutcome(cancelled=False, counts=run.counts)

    async def _load_movie_lists(
        self, run: RefreshPass, categories: list[Category]
    ) -> list[Movie]:
        collected: dict[int, Movie] = {}
        total = len(categories)
        span = MOVIE_LISTS_PROGRESS - CATEGORIES_PROGRESS
        for index, category in enumerate(categories, start=1):
            run.token.raise_if_cancelled()
            category_id = category.category_id
            movies = await self._fetch(
                run,
                self._xtream.target("get_vod_streams", category_id=category_id),
                lambda: self._xtream.get_vod_streams(category_id),
            )
            if movies is not None:
                run.cache.set_movies(category_id, movies)
                for movie in movies:
                    if movie.stream_id in collected:
                        continue
                    if movie.category_id is None:
                        movie = movie.model_copy(update={"category_id": category_id})
                    collected[movie.stream_id] = movie
            self._state.report(progress=CATEGORIES_PROGRESS + span * index / total)
        run.counts.movies = len(collected)
        logger.info("Fetched %s movies across %s categories", len(collected), total)
        self._state.report(progress=MOVIE_LISTS_PROGRESS)
        return list(collected.values())

    async def _resolve_artwork(
        self, run: RefreshPass, movies: list[Movie], resolver: ArtworkResolver
    ) -> None:
        if not movies:
            return
        overrides = parse_title_overrides(run.settings.title_overrides)
        if overrides:
            logger.info("Loaded %s title override(s)", len(overrides))
        counts = run.counts
        total = len(movies)
        span = MOVIE_ARTWORK_PROGRESS - MOVIE_LISTS_PROGRESS
        done = 0
        semaphore = asyncio.Semaphore(max(1, min(10, run.settings.refresh_parallelism)))

        async def worker(movie: Movie) -> None:
            nonlocal done
            async with semaphore:
                run.token.raise_if_cancelled()
                await run.throttle.wait(run.token)
                image_url = await resolver.resolve(
                    movie.stream_id, movie.name, overrides, cache=run.cache
                )
            if image_url:
                counts.artwork_found += 1
            else:
                counts.artwork_missing += 1
            done += 1
            self._state.report(
                progress=MOVIE_LISTS_PROGRESS + span * done / total,
                status=f"Artwork lookup {done}/{total} ({counts.artwork_found} found)",
            )
            if done % PROGRESS_LOG_EVERY == 0:
                logger.info(
                    "Artwork lookup progress: %s/%s movies (%s found)",
                    done,
                    total,
                    counts.artwork_found,
                )

        results = await asyncio.gather(
            *(worker(movie) for movie in movies), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        run.token.raise_if_cancelled()
        logger.info(
            "Artwork lookup completed: %s found, %s not found",
            counts.artwork_found,
            counts.artwork_missing,
        )

    def _complete(self, run: RefreshPass, category_count: int) -> None:
        counts = run.counts
        self._state.completed_at = datetime.now(timezone.utc)
        self._state.report(progress=1.0, status=f"Completed: {counts.movies} movies")
        logger.info(
            "VOD refresh completed: %s movies across %s categories",
            counts.movies,
            category_count,
        )
        self._log_failures()
        self.schedule_populate()
