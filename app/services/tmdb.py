"""Utilities for resolving artwork from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"


@dataclass(slots=True)
class MetadataSearchResult:
    """Normalized view of a TMDB series or movie result."""

    tmdb_id: str
    name: str
    image_url: str
    year: int | None = None


class TMDBClient:
    """Client responsible for searching TMDB for series or movie artwork.

    ``media`` selects the TMDB collection, ``"tv"`` for series and
    ``"movie"`` for VOD titles.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        media: Literal["tv", "movie"] = "tv",
    ):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client
        self._media = media

    async def search_by_name(self, term: str) -> list[MetadataSearchResult]:
        """Return search results for ``term`` in TMDB's ranking order."""

        params = {
            "query": term,
            "include_adult": "false",
            "language": self._settings.tmdb_language,
            "page": 1,
            "api_key": self._settings.tmdb_api_key,
        }
        response = await self._client.get(f"/search/{self._media}", params=params)
        if response.status_code >= 400:
            logger.warning("TMDB search for %s failed: %s", term, response.text)
            return []
        data = response.json()
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            return []
        return [
            self._to_result(candidate)
            for candidate in results
            if isinstance(candidate, dict) and candidate.get("id") is not None
        ]

    async def search_by_external_id(self, tmdb_id: str) -> list[MetadataSearchResult]:
        """Return the title identified by ``tmdb_id`` as a one-element list."""

        params = {
            "language": self._settings.tmdb_language,
            "api_key": self._settings.tmdb_api_key,
        }
        response = await self._client.get(f"/{self._media}/{tmdb_id}", params=params)
        if response.status_code >= 400:
            logger.warning("TMDB lookup for id %s failed: %s", tmdb_id, response.text)
            return []
        payload = response.json()
        if not isinstance(payload, dict) or payload.get("id") is None:
            return []
        return [self._to_result(payload)]

    def _to_result(self, payload: dict[str, Any]) -> MetadataSearchResult:
        return MetadataSearchResult(
            tmdb_id=str(payload["id"]),
            name=str(
                payload.get("name")
                or payload.get("title")
                or payload.get("original_name")
                or payload.get("original_title")
                or ""
            ),
            image_url=self._build_image_url(payload.get("poster_path")),
            year=self._extract_year(payload),
        )

    @staticmethod
    def _extract_year(result: dict[str, Any]) -> int | None:
        date_value = result.get("first_air_date") or result.get("release_date")
        if not isinstance(date_value, str) or len(date_value) < 4:
            return None
        try:
            return int(date_value[:4])
        except ValueError:
            return None

    @staticmethod
    def _build_image_url(path: Any) -> str:
        if not isinstance(path, str) or not path:
            return ""
        if path.startswith("http"):
            return path
        return f"{POSTER_BASE_URL}{path}"
