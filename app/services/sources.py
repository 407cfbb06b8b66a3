"""Uniform access to the list providers, keyed by source type."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Protocol

from ..exceptions import FailureKind, ListValidationError, SourceError
from ..models import MetaItem, SourceListFields, SourceType
from .imdb import ImdbChartClient
from .mdblist import MdbListClient
from .plex import PlexClient
from .trakt import DEFAULT_LIST_PATHS, TraktClient

logger = logging.getLogger(__name__)

IMDB_TOP_LIST_TYPE = "imdb_top"


def _kind_label(source: SourceListFields) -> str:
    return "Series" if source.content_type == "series" else "Movies"


class SourceAdapter(Protocol):
    """Contract every provider adapter fulfils."""

    def validate_config(self, source: SourceListFields) -> None:
        """Raise ``SourceError(INVALID_CONFIG)`` when required keys are missing."""

    def display_name(self, source: SourceListFields) -> str: ...

    def probe_limit(self, limit: int) -> int:
        """Item limit used when validating a new or edited list."""

    async def fetch_items(
        self, source: SourceListFields, limit: int
    ) -> list[MetaItem]: ...


@dataclass(slots=True)
class FetchedList:
    """Items fetched for a source together with its resolved display name."""

    name: str
    items: list[MetaItem]


class TraktUserListSource:
    def __init__(self, trakt: TraktClient):
        self._trakt = trakt

    def validate_config(self, source: SourceListFields) -> None:
        if not source.config.get("username") or not source.config.get("listId"):
            raise SourceError(FailureKind.INVALID_CONFIG, "Missing Trakt credentials")

    def display_name(self, source: SourceListFields) -> str:
        return source.alias

    def probe_limit(self, limit: int) -> int:
        return limit

    async def fetch_items(self, source: SourceListFields, limit: int) -> list[MetaItem]:
        return await self._trakt.fetch_list_items(
            str(source.config["username"]), str(source.config["listId"]), limit=limit
        )


class DefaultListSource:
    """Trakt's public listings plus the fixed IMDB Top 250 charts."""

    def __init__(self, trakt: TraktClient, imdb: ImdbChartClient):
        self._trakt = trakt
        self._imdb = imdb

    @staticmethod
    def list_type(source: SourceListFields) -> str:
        return str(source.config.get("listType") or "trending")

    def validate_config(self, source: SourceListFields) -> None:
        list_type = self.list_type(source)
        if list_type != IMDB_TOP_LIST_TYPE and list_type not in DEFAULT_LIST_PATHS:
            raise SourceError(
                FailureKind.INVALID_CONFIG, f"Missing or unknown list type {list_type!r}"
            )

    def display_name(self, source: SourceListFields) -> str:
        list_type = self.list_type(source)
        if list_type == IMDB_TOP_LIST_TYPE:
            return f"IMDB Top 250 {_kind_label(source)}"
        label = source.config.get("listTypeLabel")
        if isinstance(label, str) and label.strip():
            return label.strip()
        return f"Trakt {list_type.title()} {_kind_label(source)}"

    def probe_limit(self, limit: int) -> int:
        return limit

    async def fetch_items(self, source: SourceListFields, limit: int) -> list[MetaItem]:
        if self.list_type(source) == IMDB_TOP_LIST_TYPE:
            chart = await self._imdb.fetch_top_250(source.content_type)
            return chart[:limit]
        return await self._trakt.fetch_default_list(
            self.list_type(source), source.content_type, limit=limit
        )


class MdbListSource:
    def __init__(self, mdblist: MdbListClient):
        self._mdblist = mdblist

    def validate_config(self, source: SourceListFields) -> None:
        MdbListClient.list_path(source.config)

    def display_name(self, source: SourceListFields) -> str:
        return source.alias

    def probe_limit(self, limit: int) -> int:
        return limit

    async def fetch_items(self, source: SourceListFields, limit: int) -> list[MetaItem]:
        return await self._mdblist.fetch_list_items(source.config, limit=limit)


class PlexCollectionSource:
    def __init__(self, plex: PlexClient):
        self._plex = plex

    def validate_config(self, source: SourceListFields) -> None:
        if not source.config.get("collectionId"):
            raise SourceError(FailureKind.INVALID_CONFIG, "Missing Plex Collection ID")

    def display_name(self, source: SourceListFields) -> str:
        return source.alias

    def probe_limit(self, limit: int) -> int:
        # Connectivity check only; one item is enough.
        return 1

    async def fetch_items(self, source: SourceListFields, limit: int) -> list[MetaItem]:
        return await self._plex.fetch_collection_items(
            str(source.config["collectionId"]), limit=limit
        )


class SourceRegistry:
    """Dispatches fetches and validation to the adapter for each source type."""

    def __init__(self, adapters: Mapping[SourceType, SourceAdapter]):
        self._adapters = dict(adapters)

    @classmethod
    def from_clients(
        cls,
        *,
        trakt: TraktClient,
        mdblist: MdbListClient,
        imdb: ImdbChartClient,
        plex: PlexClient,
    ) -> "SourceRegistry":
        return cls(
            {
                SourceType.TRAKT_USER_LIST: TraktUserListSource(trakt),
                SourceType.DEFAULT_LIST: DefaultListSource(trakt, imdb),
                SourceType.MDBLIST_LIST: MdbListSource(mdblist),
                SourceType.PLEX_COLLECTION: PlexCollectionSource(plex),
            }
        )

    def adapter_for(self, source_type: SourceType) -> SourceAdapter:
        adapter = self._adapters.get(source_type)
        if adapter is None:
            raise SourceError(
                FailureKind.INVALID_CONFIG, f"Missing adapter for source type {source_type}"
            )
        return adapter

    async def fetch(self, source: SourceListFields, default_limit: int) -> FetchedList:
        """Fetch a list's items; every failure surfaces as ``SourceError``."""

        adapter = self.adapter_for(source.type)
        limit = source.effective_limit(default_limit)
        try:
            adapter.validate_config(source)
            items = await adapter.fetch_items(source, limit)
        except SourceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected failure fetching list %s", source.alias)
            raise SourceError(FailureKind.UNREACHABLE, str(exc)) from exc
        return FetchedList(name=adapter.display_name(source), items=list(items))

    async def validate(self, source: SourceListFields, default_limit: int) -> None:
        """Check that a list is reachable before it is stored."""

        try:
            adapter = self.adapter_for(source.type)
            adapter.validate_config(source)
            await adapter.fetch_items(
                source, adapter.probe_limit(source.effective_limit(default_limit))
            )
        except SourceError as exc:
            logger.error("Validation failed for list %s: %s", source.alias, exc.message)
            raise ListValidationError(f"Could not access list: {exc.message}") from exc
        except Exception as exc:
            logger.exception("Unexpected failure validating list %s", source.alias)
            raise ListValidationError(f"Could not access list: {exc}") from exc
