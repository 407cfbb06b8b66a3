"""Utilities for communicating with the Trakt API."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

import httpx

from ..config import Settings
from ..exceptions import FailureKind, SourceError
from ..models import ContentType, MetaItem
from ..utils import is_imdb_id

logger = logging.getLogger(__name__)


DEFAULT_LIST_PATHS: dict[str, str] = {
    "trending": "trending",
    "popular": "popular",
    "streaming": "streaming",
    "favorited": "favorited/weekly",
    "watched": "watched/weekly",
}


class TraktClient:
    """Thin wrapper around the Trakt HTTP API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        max_retries: int = 3,
    ):
        self._settings = settings
        self._client = http_client
        self._max_retries = max_retries

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "trakt-api-version": "2",
            "User-Agent": f"{self._settings.app_name} (shufflist)",
        }
        if self._settings.trakt_client_id:
            headers["trakt-api-key"] = self._settings.trakt_client_id
        return headers

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        # Retry on transient errors (timeouts, 5xx)
        attempt = 0
        while True:
            try:
                response = await self._client.get(
                    path, headers=self._headers(), params=params
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to Trakt (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise SourceError(
                    FailureKind.UNREACHABLE, f"Trakt request to {path} failed: {exc}"
                ) from exc

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Trakt %s for %s. Retrying in %.1fs",
                        response.status_code,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            break

        if response.status_code >= 400:
            logger.warning(
                "Trakt request to %s failed with %s: %s",
                path,
                response.status_code,
                response.text,
            )
            raise SourceError(
                FailureKind.from_status(response.status_code),
                f"Trakt returned {response.status_code} for {path}",
            )
        try:
            return response.json()
        except ValueError as exc:
            raise SourceError(
                FailureKind.UNREACHABLE, f"Unexpected non-JSON Trakt response for {path}"
            ) from exc

    async def fetch_list_items(
        self, username: str, list_id: str, *, limit: int
    ) -> list[MetaItem]:
        """Fetch the movies and shows of a user-owned list."""

        path = f"/users/{username}/lists/{list_id}/items"
        data = await self._get(path, {"limit": limit, "extended": "full"})
        if not isinstance(data, list):
            raise SourceError(
                FailureKind.UNREACHABLE, f"Unexpected Trakt response structure for {path}"
            )

        items: list[MetaItem] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            entry_type = entry.get("type")
            if entry_type == "movie":
                item = self.to_meta_item(entry.get("movie"), "movie")
            elif entry_type == "show":
                item = self.to_meta_item(entry.get("show"), "series")
            else:
                continue
            if item is not None:
                items.append(item)
        return items[:limit]

    async def fetch_default_list(
        self, list_type: str, content_type: ContentType, *, limit: int
    ) -> list[MetaItem]:
        """Fetch one of the public trending/popular/... listings."""

        kind = "shows" if content_type == "series" else "movies"
        endpoint = DEFAULT_LIST_PATHS.get(list_type, DEFAULT_LIST_PATHS["trending"])
        path = f"/{kind}/{endpoint}"
        params: dict[str, Any] = {"limit": limit, "extended": "full"}
        if list_type == "popular":
            params["years"] = f"1970-{datetime.now().year}"

        logger.info("Fetching default Trakt list %s (%s) -> %s", list_type, content_type, path)
        data = await self._get(path, params)
        if not isinstance(data, list):
            raise SourceError(
                FailureKind.UNREACHABLE, f"Unexpected Trakt response structure for {path}"
            )

        key = "show" if content_type == "series" else "movie"
        items: list[MetaItem] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            # Trending/watched wrap the media object, popular returns it bare.
            media = entry.get(key) if isinstance(entry.get(key), dict) else entry
            item = self.to_meta_item(media, content_type)
            if item is not None:
                items.append(item)
        return items[:limit]

    @staticmethod
    def to_meta_item(media: Any, content_type: ContentType) -> MetaItem | None:
        """Normalise a Trakt movie/show object; entries without an IMDB id are dropped."""

        if not isinstance(media, dict):
            return None
        ids = media.get("ids") or {}
        imdb_id = ids.get("imdb") if isinstance(ids, dict) else None
        if not is_imdb_id(imdb_id):
            return None
        title = media.get("title")
        if not isinstance(title, str) or not title.strip():
            return None

        poster = None
        images = media.get("images")
        if isinstance(images, dict):
            posters = images.get("poster") or []
            if isinstance(posters, list) and posters and isinstance(posters[0], str):
                poster = posters[0]
                if not poster.startswith("http"):
                    poster = f"https://{poster}"

        overview = media.get("overview")
        return MetaItem(
            id=imdb_id.strip(),
            type=content_type,
            name=title.strip(),
            poster=poster,
            description=overview if isinstance(overview, str) and overview else None,
        )
