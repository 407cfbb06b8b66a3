"""Scraper for the IMDB Top 250 chart pages."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..exceptions import FailureKind, SourceError
from ..models import ContentType, MetaItem
from ..utils import extract_script_json, is_imdb_id

logger = logging.getLogger(__name__)

# The chart is only fully hydrated for browser-looking clients.
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class ImdbChartClient:
    """Reads the Top 250 movies/series charts from the page's ``__NEXT_DATA__`` block."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._urls: dict[str, str] = {
            "movie": str(settings.imdb_top_movies_url),
            "series": str(settings.imdb_top_series_url),
        }
        self._client = http_client

    async def fetch_top_250(self, content_type: ContentType) -> list[MetaItem]:
        url = self._urls[content_type]
        logger.info("Scraping IMDB chart %s", url)
        try:
            response = await self._client.get(
                url, headers={"User-Agent": BROWSER_USER_AGENT}
            )
        except httpx.HTTPError as exc:
            raise SourceError(
                FailureKind.UNREACHABLE, f"IMDB chart request failed: {exc}"
            ) from exc
        if response.status_code >= 400:
            raise SourceError(
                FailureKind.from_status(response.status_code),
                f"IMDB chart returned {response.status_code}",
            )

        try:
            document = extract_script_json(response.text, "__NEXT_DATA__")
        except ValueError as exc:
            raise SourceError(
                FailureKind.UNREACHABLE, f"Failed to parse IMDB page: {exc}"
            ) from exc

        edges = self._chart_edges(document)
        if not edges:
            raise SourceError(
                FailureKind.EMPTY, "IMDB chart data structure was empty"
            )

        items: list[MetaItem] = []
        for edge in edges:
            item = self.to_meta_item(edge, content_type)
            if item is not None:
                items.append(item)
        return items

    @staticmethod
    def _chart_edges(document: Any) -> list[Any]:
        node: Any = document
        for key in ("props", "pageProps", "pageData", "chartTitles", "edges"):
            if not isinstance(node, dict):
                return []
            node = node.get(key)
        return node if isinstance(node, list) else []

    @staticmethod
    def to_meta_item(edge: Any, content_type: ContentType) -> MetaItem | None:
        node = edge.get("node") if isinstance(edge, dict) else None
        if not isinstance(node, dict) or not is_imdb_id(node.get("id")):
            return None

        title = (node.get("titleText") or {}).get("text") or "Unknown Title"
        poster = (node.get("primaryImage") or {}).get("url")
        rating = (node.get("ratingsSummary") or {}).get("aggregateRating")
        return MetaItem(
            id=node["id"],
            type=content_type,
            name=title,
            poster=poster or None,
            description=f"IMDB Rating: {rating}/10" if rating is not None else None,
        )
