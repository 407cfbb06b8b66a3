"""MDBList API client for user-curated lists."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..config import Settings
from ..exceptions import FailureKind, SourceError
from ..models import MetaItem
from ..utils import is_imdb_id

logger = logging.getLogger(__name__)


class MdbListClient:
    """Resolves an MDBList list and fetches its items."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._api_key = settings.mdblist_api_key
        self._client = http_client

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        try:
            response = await self._client.get(
                path, params={"apikey": self._api_key, **params}
            )
        except httpx.HTTPError as exc:
            logger.warning("MDBList fetch failed for %s: %s", path, exc)
            raise SourceError(
                FailureKind.UNREACHABLE, f"Failed to fetch MdbList: {exc}"
            ) from exc

        if response.status_code >= 400:
            logger.warning("MDBList fetch failed for %s: %s", path, response.status_code)
            raise SourceError(
                FailureKind.from_status(response.status_code),
                f"Failed to fetch MdbList: {response.status_code} for {path}",
            )
        try:
            return response.json()
        except ValueError as exc:
            raise SourceError(
                FailureKind.UNREACHABLE, f"Unexpected non-JSON MdbList response for {path}"
            ) from exc

    @staticmethod
    def list_path(config: Mapping[str, Any]) -> str:
        """Return the lookup path for a list id or a username/list-name pair."""

        list_id = str(config.get("listId") or "").strip()
        if list_id:
            return f"/lists/{list_id}"
        username = str(config.get("username") or "").strip()
        list_name = str(config.get("listName") or "").strip()
        if username and list_name:
            return f"/lists/{username}/{list_name}"
        raise SourceError(
            FailureKind.INVALID_CONFIG,
            "Missing MdbList list: provide either List ID or Username + List Name",
        )

    async def fetch_list_items(
        self, config: Mapping[str, Any], *, limit: int
    ) -> list[MetaItem]:
        if not self._api_key:
            raise SourceError(FailureKind.INVALID_CONFIG, "Missing MdbList API key")

        path = self.list_path(config)
        info = await self._get(path, {})
        if not isinstance(info, list) or not info or not isinstance(info[0], dict):
            raise SourceError(FailureKind.NOT_FOUND, f"MdbList list {path} not found")

        resolved_id = info[0].get("id")
        mediatype = info[0].get("mediatype")
        payload = await self._get(f"/lists/{resolved_id}/items", {"limit": limit})

        if isinstance(payload, dict):
            raw_items = payload.get("shows" if mediatype == "show" else "movies") or []
        elif isinstance(payload, list):
            raw_items = payload
        else:
            raw_items = []

        items: list[MetaItem] = []
        for entry in raw_items:
            item = self.to_meta_item(entry)
            if item is not None:
                items.append(item)
        return items[:limit]

    @staticmethod
    def to_meta_item(entry: Any) -> MetaItem | None:
        if not isinstance(entry, dict):
            return None
        imdb_id = entry.get("imdb_id")
        title = entry.get("title")
        if not is_imdb_id(imdb_id) or not isinstance(title, str) or not title:
            return None
        poster = entry.get("poster")
        description = entry.get("description")
        return MetaItem(
            id=imdb_id.strip(),
            type="series" if entry.get("mediatype") == "show" else "movie",
            name=title,
            poster=poster if isinstance(poster, str) and poster else None,
            description=description if isinstance(description, str) and description else None,
        )
