"""Plex Media Server client for collection-based lists."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..exceptions import FailureKind, SourceError
from ..models import ContentType, MetaItem
from ..utils import is_imdb_id

logger = logging.getLogger(__name__)

SECTION_TYPES: dict[str, str] = {"movie": "movie", "series": "show"}


class PlexClient:
    """Talks to a single Plex server using a static token."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._base_url = str(settings.plex_url).rstrip("/") if settings.plex_url else None
        self._token = settings.plex_token
        self._client = http_client

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._token)

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.configured:
            raise SourceError(
                FailureKind.INVALID_CONFIG, "Missing Plex server URL or token"
            )
        if not path.startswith("/"):
            path = f"/{path}"
        try:
            response = await self._client.get(
                f"{self._base_url}{path}",
                params=params,
                headers={"X-Plex-Token": self._token or "", "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise SourceError(
                FailureKind.UNREACHABLE, f"Plex request to {path} failed: {exc}"
            ) from exc
        if response.status_code >= 400:
            raise SourceError(
                FailureKind.from_status(response.status_code),
                f"Plex returned {response.status_code} for {path}",
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise SourceError(
                FailureKind.UNREACHABLE, f"Unexpected non-JSON Plex response for {path}"
            ) from exc
        container = data.get("MediaContainer") if isinstance(data, dict) else None
        return container if isinstance(container, dict) else {}

    async def list_collections(self, content_type: ContentType) -> list[dict[str, str]]:
        """Return ``{key, title}`` for every collection in matching libraries."""

        section_type = SECTION_TYPES[content_type]
        container = await self._get("/library/sections")
        sections = [
            section
            for section in container.get("Directory") or []
            if isinstance(section, dict) and section.get("type") == section_type
        ]

        collections: list[dict[str, str]] = []
        for section in sections:
            listing = await self._get(f"/library/sections/{section.get('key')}/collections")
            for entry in listing.get("Metadata") or []:
                if not isinstance(entry, dict) or not entry.get("key"):
                    continue
                collections.append(
                    {"key": str(entry["key"]), "title": str(entry.get("title") or "Unknown")}
                )
        logger.info("Found %s Plex collections for %s", len(collections), content_type)
        return collections

    async def fetch_collection_items(
        self, collection_key: str, *, limit: int
    ) -> list[MetaItem]:
        container = await self._get(collection_key, {"includeGuids": 1})
        items: list[MetaItem] = []
        for entry in (container.get("Metadata") or [])[:limit]:
            item = self.to_meta_item(entry)
            if item is not None:
                items.append(item)
        return items

    @staticmethod
    def to_meta_item(entry: Any) -> MetaItem | None:
        """Normalise a Plex metadata entry, keeping only items with an IMDB guid."""

        if not isinstance(entry, dict):
            return None
        imdb_id = None
        for guid in entry.get("Guid") or []:
            value = guid.get("id") if isinstance(guid, dict) else None
            if isinstance(value, str) and value.startswith("imdb://"):
                imdb_id = value.removeprefix("imdb://")
                break
        if not is_imdb_id(imdb_id):
            return None
        summary = entry.get("summary")
        return MetaItem(
            id=imdb_id,
            type="series" if entry.get("type") == "show" else "movie",
            name=str(entry.get("title") or imdb_id),
            description=summary if isinstance(summary, str) and summary else None,
        )
