"""Create, edit and delete source lists and slots without breaking selections."""

from __future__ import annotations

import logging
from typing import Callable

from ..exceptions import ListNotFoundError, SlotNotFoundError
from ..models import (
    CatalogSlot,
    SlotDraft,
    SlotUpdate,
    SourceList,
    SourceListDraft,
    SourceListUpdate,
)
from ..utils import new_identifier
from .config_store import ConfigStore
from .selection import SelectionEngine, SelectionResult
from .sources import SourceRegistry

logger = logging.getLogger(__name__)


class LibraryManager:
    """Mutations over lists and slots that keep slot selections consistent.

    Provider validation happens before the write lock is taken; every change
    to the stored configuration happens while holding it.
    """

    def __init__(
        self,
        store: ConfigStore,
        registry: SourceRegistry,
        engine: SelectionEngine,
        *,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._engine = engine
        self._new_id = id_factory or new_identifier

    def list_lists(self) -> list[SourceList]:
        return list(self._store.lists)

    def list_slots(self) -> list[CatalogSlot]:
        return list(self._store.slots)

    def _require_list(self, list_id: str) -> SourceList:
        source = self._store.data.find_list(list_id)
        if source is None:
            raise ListNotFoundError(list_id)
        return source

    def _require_slot(self, slot_id: str) -> CatalogSlot:
        slot = self._store.data.find_slot(slot_id)
        if slot is None:
            raise SlotNotFoundError(slot_id)
        return slot

    async def add_list(self, draft: SourceListDraft) -> SourceList:
        """Validate and store a list, joining it to every "select all" slot."""

        await self._registry.validate(draft, self._store.settings.default_item_limit)

        async with self._store.write_lock:
            data = self._store.data
            existing_ids = [item.id for item in data.lists_of_type(draft.content_type)]
            source = SourceList(id=self._new_id(), **draft.model_dump())
            data.lists.append(source)

            for slot in data.slots:
                if slot.content_type != source.content_type:
                    continue
                if all(list_id in slot.list_ids for list_id in existing_ids):
                    slot.list_ids.append(source.id)
                    logger.info("Added list %s to slot %s", source.alias, slot.alias)

            await self._store.save()
            return source

    async def update_list(
        self, list_id: str, update: SourceListUpdate
    ) -> tuple[SourceList, list[SelectionResult]]:
        """Apply changes, re-validating when the provider or its config changed.

        Slots currently showing the list are refreshed straight away.
        """

        changes = update.changes()
        current = self._require_list(list_id)
        if "config" in changes or "type" in changes:
            candidate = SourceList.model_validate({**current.model_dump(), **changes})
            await self._registry.validate(
                candidate, self._store.settings.default_item_limit
            )

        async with self._store.write_lock:
            data = self._store.data
            current = self._require_list(list_id)
            updated = SourceList.model_validate({**current.model_dump(), **changes})
            data.lists[data.lists.index(current)] = updated
            await self._store.save()

            results: list[SelectionResult] = []
            showing = [slot for slot in data.slots if slot.active_source_id == list_id]
            if showing:
                logger.info(
                    "Updating %s slots that use list %s", len(showing), updated.alias
                )
            for slot in showing:
                results.append(await self._engine.select_for_slot(slot.id))
            return updated, results

    async def delete_list(self, list_id: str) -> None:
        """Remove a list and prune it from every slot.

        Slots showing the list keep their items until their next refresh.
        """

        async with self._store.write_lock:
            data = self._store.data
            source = self._require_list(list_id)
            data.lists.remove(source)
            for slot in data.slots:
                if list_id in slot.list_ids:
                    slot.list_ids = [item for item in slot.list_ids if item != list_id]
            logger.info("Deleted list %s", source.alias)
            await self._store.save()

    async def add_slot(self, draft: SlotDraft) -> tuple[CatalogSlot, SelectionResult]:
        async with self._store.write_lock:
            data = self._store.data
            slot = CatalogSlot(
                id=self._new_id(),
                alias=draft.alias,
                content_type=draft.content_type,
                list_ids=[item.id for item in data.lists_of_type(draft.content_type)],
            )
            data.slots.append(slot)
            await self._store.save()
            result = await self._engine.select_for_slot(slot.id)
            return slot, result

    async def update_slot(
        self, slot_id: str, update: SlotUpdate
    ) -> SelectionResult | None:
        """Apply slot changes; returns the refresh result when one was forced."""

        async with self._store.write_lock:
            slot = self._require_slot(slot_id)
            should_refresh = False

            if update.alias is not None:
                slot.alias = update.alias
            if update.list_ids is not None:
                known = [
                    item
                    for item in update.list_ids
                    if self._store.data.find_list(item) is not None
                ]
                if len(known) != len(update.list_ids):
                    logger.warning(
                        "Ignoring unknown lists for slot %s: %s",
                        slot.alias,
                        sorted(set(update.list_ids) - set(known)),
                    )
                slot.list_ids = known
                active = slot.active_source_id
                if active and active not in slot.list_ids:
                    should_refresh = True
            if update.content_type is not None and update.content_type != slot.content_type:
                slot.content_type = update.content_type
                should_refresh = True

            await self._store.save()
            if not should_refresh:
                return None
            logger.info("Slot %s selection is no longer valid, refreshing", slot.alias)
            return await self._engine.select_for_slot(slot.id)

    async def delete_slot(self, slot_id: str) -> None:
        async with self._store.write_lock:
            data = self._store.data
            slot = self._require_slot(slot_id)
            data.slots.remove(slot)
            logger.info("Deleted slot %s", slot.alias)
            await self._store.save()
