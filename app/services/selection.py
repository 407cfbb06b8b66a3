"""Choose and commit the active source list for each catalog slot."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal

from .. import __version__
from ..exceptions import SlotNotFoundError, SourceError
from ..models import CatalogSlot, MetaItem, Selection, SourceList
from ..utils import placeholder_poster_url, shuffle_in_place
from .config_store import ConfigStore
from .sources import SourceRegistry

logger = logging.getLogger(__name__)

CATALOG_PREFIX = "cat_"
HEADER_PREFIX = "shufflist_header_"

SelectionStatus = Literal["ok", "no_candidates", "exhausted"]


@dataclass
class SelectionResult:
    """Outcome of refreshing a single slot."""

    slot_id: str
    success: bool
    status: SelectionStatus
    list_name: str | None = None
    retried: bool = False
    failed_list_name: str | None = None
    fail_reason: str | None = None
    is_empty: bool = False
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "slotId": self.slot_id,
            "success": self.success,
            "status": self.status,
            "listName": self.list_name,
            "retried": self.retried,
            "failedListName": self.failed_list_name,
            "failReason": self.fail_reason,
            "isEmpty": self.is_empty,
            "error": self.error,
        }


def catalog_id_for(slot_id: str) -> str:
    return f"{CATALOG_PREFIX}{slot_id}"


def build_header_item(slot: CatalogSlot, list_name: str, timestamp_ms: int) -> MetaItem:
    """Synthetic first entry naming the list a slot is currently showing."""

    return MetaItem(
        id=f"{HEADER_PREFIX}{slot.id}_{timestamp_ms}",
        type=slot.content_type,
        name=list_name,
        description=f"Currently displaying: {list_name}",
        poster=placeholder_poster_url(list_name),
    )


class SelectionEngine:
    """Picks a random eligible list per slot while keeping lists and groups exclusive.

    ``refresh_slot`` and ``refresh_all_slots`` take the store's write lock.
    ``select_for_slot`` is the lock-free core for callers that already hold it.
    """

    def __init__(
        self,
        store: ConfigStore,
        registry: SourceRegistry,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._rng = rng or random.Random()
        self._clock = clock or time.time

    def candidate_lists(self, slot: CatalogSlot) -> list[SourceList]:
        """Lists referenced by the slot that match its content type."""

        wanted = set(slot.list_ids)
        return [
            source
            for source in self._store.lists
            if source.id in wanted and source.content_type == slot.content_type
        ]

    def _active_elsewhere(self, slot_id: str) -> tuple[set[str], set[str]]:
        source_ids: set[str] = set()
        groups: set[str] = set()
        for other in self._store.slots:
            if other.id == slot_id or not other.active_source_id:
                continue
            source_ids.add(other.active_source_id)
            active = self._store.data.find_list(other.active_source_id)
            if active is not None and active.group:
                groups.add(active.group)
        return source_ids, groups

    def _exclusive_pool(
        self, slot: CatalogSlot, candidates: list[SourceList]
    ) -> list[SourceList]:
        taken_ids, taken_groups = self._active_elsewhere(slot.id)
        pool = [
            source
            for source in candidates
            if source.id not in taken_ids
            and not (source.group and source.group in taken_groups)
        ]
        if not pool:
            logger.warning(
                "Slot %s has no lists left after exclusivity rules, using the full pool",
                slot.alias,
            )
            return list(candidates)
        return pool

    async def refresh_slot(self, slot_id: str) -> SelectionResult:
        async with self._store.write_lock:
            return await self.select_for_slot(slot_id)

    async def select_for_slot(self, slot_id: str) -> SelectionResult:
        """Select, fetch and commit a new list for ``slot_id``.

        The caller must hold ``ConfigStore.write_lock``.
        """

        slot = self._store.data.find_slot(slot_id)
        if slot is None:
            raise SlotNotFoundError(slot_id)

        candidates = self.candidate_lists(slot)
        if not candidates:
            logger.warning(
                "Slot %s (%s) has no available lists to choose from",
                slot.alias,
                slot.content_type,
            )
            return SelectionResult(
                slot_id=slot.id,
                success=False,
                status="no_candidates",
                error="No lists available for this slot",
            )

        pool = self._exclusive_pool(slot, candidates)
        default_limit = self._store.settings.default_item_limit
        first_failure: tuple[SourceList, SourceError] | None = None

        while pool:
            source = self._rng.choice(pool)
            logger.info(
                "Refreshing slot %s trying list %s (pool: %s)",
                slot.alias,
                source.alias,
                len(pool),
            )
            try:
                fetched = await self._registry.fetch(source, default_limit)
            except SourceError as exc:
                logger.error("Failed to fetch list %s: %s", source.alias, exc.message)
                if first_failure is None:
                    first_failure = (source, exc)
                pool.remove(source)
                continue

            items = list(fetched.items)
            if source.shuffle:
                shuffle_in_place(items, self._rng)
            header = build_header_item(slot, fetched.name, int(self._clock() * 1000))
            slot.current_selection = Selection(
                name=fetched.name,
                source_type=source.type.value,
                source_id=source.id,
                items=[header, *items],
            )
            logger.info(
                "Slot %s updated with %s items from %s",
                slot.alias,
                len(items),
                fetched.name,
            )
            await self._store.save()

            result = SelectionResult(
                slot_id=slot.id,
                success=True,
                status="ok",
                list_name=fetched.name,
                retried=first_failure is not None,
                is_empty=not items,
            )
            if first_failure is not None:
                failed_source, failure = first_failure
                result.failed_list_name = failed_source.alias
                result.fail_reason = failure.reason
            return result

        logger.error("Slot %s failed to refresh after trying all available lists", slot.alias)
        result = SelectionResult(
            slot_id=slot.id,
            success=False,
            status="exhausted",
            error="All lists failed",
        )
        if first_failure is not None:
            failed_source, failure = first_failure
            result.failed_list_name = failed_source.alias
            result.fail_reason = failure.reason
            result.error = failure.message
        return result

    async def refresh_all_slots(self) -> list[SelectionResult]:
        """Refresh every slot with lists, most constrained slots first."""

        async with self._store.write_lock:
            logger.info("Refreshing all slots")
            batch = [slot for slot in self._store.slots if slot.list_ids]
            batch.sort(key=lambda slot: len(self.candidate_lists(slot)))

            # Exclusivity within the batch only sees slots decided in this run.
            for slot in batch:
                slot.current_selection = None

            results: list[SelectionResult] = []
            for slot in batch:
                results.append(await self.select_for_slot(slot.id))

            await self._store.save()
            succeeded = sum(1 for result in results if result.success)
            logger.info("Refreshed %s of %s slots", succeeded, len(results))
            return results

    def get_items(self, catalog_id: str) -> list[MetaItem]:
        """Return the committed items for a catalog; never fetches."""

        slot = self._store.data.find_slot(catalog_id.removeprefix(CATALOG_PREFIX))
        if slot is None or slot.current_selection is None:
            return []
        return list(slot.current_selection.items)

    def get_manifest(self) -> dict[str, Any]:
        catalogs = [
            {
                "id": catalog_id_for(slot.id),
                "type": slot.content_type,
                "name": slot.alias,
                "extra": [{"name": "skip"}],
            }
            for slot in self._store.slots
        ]
        return {
            "id": "org.stremio.shufflist",
            "version": __version__,
            "name": "Shufflist",
            "description": (
                "Dynamic catalogs that rotate through your lists from Trakt, "
                "MdbList, IMDB and Plex."
            ),
            "resources": ["catalog"],
            "types": ["movie", "series"],
            "catalogs": catalogs,
            "idPrefixes": ["tt"],
        }
