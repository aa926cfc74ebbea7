"""Artwork lookup for catalog titles with manual title overrides."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Protocol

from ..models import ArtworkRecord
from ..utils import parse_name
from .cancellation import RefreshCancelled
from .catalog_cache import CatalogCache
from .tmdb import MetadataSearchResult

logger = logging.getLogger(__name__)

LANGUAGE_TAG_RE = re.compile(
    r"\s*\([^)]*(?:Gesproken|Dubbed|Subbed|NL|DE|FR|Dutch|German|French|Nederlands|Deutsch)[^)]*\)\s*",
    re.IGNORECASE,
)
YEAR_RE = re.compile(r"\s*\(\d{4}\)\s*")
PLACEHOLDER_IMAGE_RE = re.compile(r"missing/", re.IGNORECASE)


class MetadataSearchProvider(Protocol):
    async def search_by_name(self, term: str) -> list[MetadataSearchResult]: ...

    async def search_by_external_id(self, tmdb_id: str) -> list[MetadataSearchResult]: ...


class TitleOverrides(dict[str, str]):
    """Title to external id mapping with case-insensitive keys."""

    def __setitem__(self, key: str, value: str) -> None:
        super().__setitem__(key.casefold(), value)

    def __getitem__(self, key: str) -> str:
        return super().__getitem__(key.casefold())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and super().__contains__(key.casefold())

    def get(self, key: str, default: str | None = None) -> str | None:  # type: ignore[override]
        return super().get(key.casefold(), default)


def parse_title_overrides(text: str | None) -> TitleOverrides:
    """Parse ``Title=ExternalId`` lines, skipping anything malformed."""

    overrides = TitleOverrides()
    if not text or not text.strip():
        return overrides
    for line in text.splitlines():
        key, separator, value = line.partition("=")
        if not separator:
            continue
        key = key.strip()
        value = value.strip()
        if key and value:
            overrides[key] = value
    return overrides


def _dedupe(terms: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for term in terms:
        folded = term.casefold()
        if not term or folded in seen:
            continue
        seen.add(folded)
        unique.append(term)
    return unique


def generate_search_terms(name: str) -> list[str]:
    """Return the ordered name variants to try against the search provider."""

    terms = [name]
    without_language = LANGUAGE_TAG_RE.sub(" ", name).strip()
    without_language = re.sub(r"\s+", " ", without_language)
    if without_language and without_language.casefold() != name.casefold():
        terms.append(without_language)
    without_year = YEAR_RE.sub(" ", terms[-1]).strip()
    without_year = re.sub(r"\s+", " ", without_year)
    if without_year and without_year.casefold() != terms[-1].casefold():
        terms.append(without_year)
    return _dedupe(terms)


def first_real_image(results: Iterable[MetadataSearchResult]) -> MetadataSearchResult | None:
    for result in results:
        if result.image_url and not PLACEHOLDER_IMAGE_RE.search(result.image_url):
            return result
    return None


class ArtworkResolver:
    """Finds artwork via overrides first, then fuzzy name search."""

    def __init__(self, provider: MetadataSearchProvider, cache: CatalogCache):
        self._provider = provider
        self._cache = cache

    async def resolve(
        self,
        entity_id: int,
        raw_title: str,
        overrides: TitleOverrides,
        *,
        cache: CatalogCache | None = None,
    ) -> str | None:
        """Return and cache an image URL for ``raw_title``, or ``None``.

        ``cache`` overrides where the record is written; a refresh passes
        its pinned view.
        """

        target = cache or self._cache
        clean_name = parse_name(raw_title).title
        if not clean_name:
            return None

        try:
            external_id = overrides.get(clean_name)
            if external_id:
                logger.info(
                    "Using title override for %s (%s) -> TMDB id %s",
                    entity_id,
                    clean_name,
                    external_id,
                )
                match = first_real_image(
                    await self._provider.search_by_external_id(external_id)
                )
                if match is not None:
                    target.set_artwork(
                        ArtworkRecord(
                            entity_id=entity_id,
                            image_url=match.image_url,
                            external_id=external_id,
                            source="override",
                        )
                    )
                    return match.image_url
                logger.warning(
                    "Title override for %s (%s) with TMDB id %s returned no image, "
                    "falling back to name search",
                    entity_id,
                    clean_name,
                    external_id,
                )

            terms = generate_search_terms(clean_name)
            for term in terms:
                match = first_real_image(await self._provider.search_by_name(term))
                if match is None:
                    continue
                target.set_artwork(
                    ArtworkRecord(
                        entity_id=entity_id,
                        image_url=match.image_url,
                        external_id=match.tmdb_id or None,
                        source="search",
                        search_term=term,
                    )
                )
                logger.debug(
                    "Cached artwork for %s (%s) using term %r: %s",
                    entity_id,
                    clean_name,
                    term,
                    match.image_url,
                )
                return match.image_url

            logger.warning(
                "No artwork found for %s (%s) after trying: %s",
                entity_id,
                clean_name,
                ", ".join(terms),
            )
        except RefreshCancelled:
            raise
        except Exception:
            logger.warning(
                "Artwork lookup failed for %s (%s)", entity_id, raw_title, exc_info=True
            )
        return None
