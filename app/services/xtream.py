"""Client for the Xtream Codes ``player_api.php`` catalog endpoints."""

from __future__ import annotations

import logging
from typing import Any, TypeVar
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import MalformedResponseError
from ..models import Category, Movie, Series, SeriesInfo, XtreamModel

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=XtreamModel)

PLAYER_API_PATH = "/player_api.php"


class XtreamClient:
    """Thin wrapper around the Xtream series and VOD catalog API.

    HTTP errors are raised so the retry executor can classify them. Payloads
    that do not match the expected shape are logged and replaced with the
    empty value of the requested type.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def configure(self, settings: Settings) -> None:
        """Use updated credentials for subsequent requests."""

        self._settings = settings

    def target(self, action: str, **params: Any) -> str:
        """Return a credential-free URL identifying a request."""

        query = urlencode({"action": action, **params})
        return f"{self._settings.xtream_base_url}{PLAYER_API_PATH}?{query}"

    def _headers(self) -> dict[str, str]:
        user_agent = self._settings.xtream_user_agent or f"{self._settings.app_name} (xtreamcache)"
        return {"User-Agent": user_agent}

    async def _request(self, action: str, **params: Any) -> Any:
        query = {
            "username": self._settings.xtream_username,
            "password": self._settings.xtream_password,
            "action": action,
            **params,
        }
        response = await self._client.get(
            f"{self._settings.xtream_base_url}{PLAYER_API_PATH}",
            params=query,
            headers=self._headers(),
        )
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"Non-JSON response for {action}: {response.text[:120]!r}"
            ) from exc

    async def get_categories(self) -> list[Category]:
        action = "get_series_categories"
        try:
            payload = await self._request(action)
        except MalformedResponseError as exc:
            logger.warning("Malformed series categories: %s", exc)
            return []
        return self._parse_list(payload, Category, action)

    async def get_series_by_category(self, category_id: int) -> list[Series]:
        action = "get_series"
        try:
            payload = await self._request(action, category_id=category_id)
        except MalformedResponseError as exc:
            logger.warning("Malformed series list for category %s: %s", category_id, exc)
            return []
        return self._parse_list(payload, Series, f"{action} (category {category_id})")

    async def get_series_info(self, series_id: int) -> SeriesInfo:
        action = "get_series_info"
        try:
            payload = await self._request(action, series_id=series_id)
            return self._parse_object(payload, SeriesInfo)
        except MalformedResponseError as exc:
            logger.warning("Malformed series info for series %s: %s", series_id, exc)
            return SeriesInfo.empty()

    async def get_vod_categories(self) -> list[Category]:
        action = "get_vod_categories"
        try:
            payload = await self._request(action)
        except MalformedResponseError as exc:
            logger.warning("Malformed VOD categories: %s", exc)
            return []
        return self._parse_list(payload, Category, action)

    async def get_vod_streams(self, category_id: int) -> list[Movie]:
        action = "get_vod_streams"
        try:
            payload = await self._request(action, category_id=category_id)
        except MalformedResponseError as exc:
            logger.warning("Malformed VOD list for category %s: %s", category_id, exc)
            return []
        return self._parse_list(payload, Movie, f"{action} (category {category_id})")

    def _parse_list(
        self, payload: Any, model: type[ModelT], context: str
    ) -> list[ModelT]:
        if isinstance(payload, dict) and not payload:
            return []
        if not isinstance(payload, list):
            logger.warning(
                "Unexpected %s response structure: %s", context, type(payload).__name__
            )
            return []
        parsed: list[ModelT] = []
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            try:
                parsed.append(model.model_validate(entry))
            except ValidationError as exc:
                logger.debug("Skipping malformed %s entry: %s", context, exc)
        return parsed

    @staticmethod
    def _parse_object(payload: Any, model: type[ModelT]) -> ModelT:
        if isinstance(payload, list) and not payload:
            return model.empty()  # type: ignore[return-value]
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"Expected an object, got {type(payload).__name__}"
            )
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(str(exc)) from exc
