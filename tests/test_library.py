from __future__ import annotations

import asyncio
import itertools

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.exceptions import (
    FailureKind,
    ListNotFoundError,
    ListValidationError,
    SlotNotFoundError,
    SourceError,
)
from app.models import (
    CatalogSlot,
    ConfigData,
    MetaItem,
    Selection,
    SlotDraft,
    SlotUpdate,
    SourceList,
    SourceListDraft,
    SourceListFields,
    SourceListUpdate,
    SourceType,
)
from app.services.config_store import ConfigStore
from app.services.library import LibraryManager
from app.services.selection import SelectionEngine
from app.services.sources import SourceRegistry


class MemoryConfigStore(ConfigStore):
    def __init__(self, data: ConfigData) -> None:
        super().__init__(async_sessionmaker())
        self._data = data
        self.saves = 0

    async def save(self) -> bool:  # type: ignore[override]
        self.saves += 1
        return True


class RecordingSource:
    """Adapter stub recording every fetch; aliases in ``broken`` fail."""

    def __init__(self, broken: set[str] | None = None) -> None:
        self.broken = broken or set()
        self.calls: list[str] = []

    def validate_config(self, source: SourceListFields) -> None:
        if not source.config.get("listId"):
            raise SourceError(FailureKind.INVALID_CONFIG, "Missing Trakt credentials")

    def display_name(self, source: SourceListFields) -> str:
        return source.alias

    def probe_limit(self, limit: int) -> int:
        return limit

    async def fetch_items(self, source: SourceListFields, limit: int) -> list[MetaItem]:
        self.calls.append(source.alias)
        if source.alias in self.broken:
            raise SourceError(FailureKind.NOT_FOUND, "Trakt returned 404")
        return [MetaItem(id="tt0000001", type=source.content_type, name=source.alias)]


def make_list(list_id: str, content_type: str = "movie") -> SourceList:
    return SourceList(
        id=list_id,
        alias=list_id,
        type=SourceType.TRAKT_USER_LIST,
        content_type=content_type,
        config={"username": "someone", "listId": list_id},
    )


def showing(source_id: str) -> Selection:
    return Selection(name=source_id, source_type="trakt_user_list", source_id=source_id)


def build_manager(
    lists: list[SourceList],
    slots: list[CatalogSlot],
    source: RecordingSource | None = None,
) -> tuple[LibraryManager, MemoryConfigStore, RecordingSource]:
    source = source or RecordingSource()
    store = MemoryConfigStore(ConfigData(lists=lists, slots=slots))
    registry = SourceRegistry({SourceType.TRAKT_USER_LIST: source})
    engine = SelectionEngine(store, registry)
    counter = itertools.count(1)
    manager = LibraryManager(
        store, registry, engine, id_factory=lambda: f"new-{next(counter)}"
    )
    return manager, store, source


def test_add_list_joins_only_select_all_slots() -> None:
    async def runner() -> None:
        everything = CatalogSlot(id="all", alias="All", list_ids=["a", "b"])
        curated = CatalogSlot(id="curated", alias="Curated", list_ids=["a"])
        series = CatalogSlot(id="series", alias="Series", content_type="series")
        manager, store, _ = build_manager(
            [make_list("a"), make_list("b")], [everything, curated, series]
        )

        draft = SourceListDraft(
            alias="Fresh",
            type=SourceType.TRAKT_USER_LIST,
            config={"username": "someone", "listId": "fresh"},
        )
        created = await manager.add_list(draft)

        assert created.id == "new-1"
        assert store.data.find_list("new-1") is created
        assert everything.list_ids == ["a", "b", "new-1"]
        assert curated.list_ids == ["a"]
        assert series.list_ids == []
        assert store.saves == 1

    asyncio.run(runner())


def test_add_list_rejects_inaccessible_lists() -> None:
    async def runner() -> None:
        manager, store, _ = build_manager(
            [], [], RecordingSource(broken={"Private"})
        )
        draft = SourceListDraft(
            alias="Private",
            type=SourceType.TRAKT_USER_LIST,
            config={"username": "someone", "listId": "private"},
        )

        with pytest.raises(ListValidationError, match="Could not access list: Trakt returned 404"):
            await manager.add_list(draft)

        assert store.lists == []
        assert store.saves == 0

    asyncio.run(runner())


def test_add_list_checks_required_config() -> None:
    async def runner() -> None:
        manager, _, source = build_manager([], [])
        draft = SourceListDraft(
            alias="Incomplete",
            type=SourceType.TRAKT_USER_LIST,
            config={"username": "someone"},
        )

        with pytest.raises(ListValidationError, match="Missing Trakt credentials"):
            await manager.add_list(draft)
        assert source.calls == []

    asyncio.run(runner())


def test_update_list_refreshes_slots_showing_it_without_revalidating() -> None:
    async def runner() -> None:
        slot = CatalogSlot(id="one", alias="One", list_ids=["a"], current_selection=showing("a"))
        idle = CatalogSlot(id="two", alias="Two", list_ids=["a"])
        manager, store, source = build_manager([make_list("a")], [slot, idle])

        updated, results = await manager.update_list(
            "a", SourceListUpdate(alias="Renamed", group="weekend")
        )

        assert updated.alias == "Renamed"
        assert updated.group == "weekend"
        assert store.data.find_list("a") is updated
        assert source.calls == ["Renamed"]
        assert [result.slot_id for result in results] == ["one"]
        assert slot.current_selection is not None
        assert slot.current_selection.name == "Renamed"
        assert idle.current_selection is None

    asyncio.run(runner())


def test_update_list_revalidates_config_changes() -> None:
    async def runner() -> None:
        manager, store, source = build_manager(
            [make_list("a")], [], RecordingSource(broken={"a"})
        )

        with pytest.raises(ListValidationError):
            await manager.update_list(
                "a", SourceListUpdate(config={"username": "other", "listId": "x"})
            )

        assert store.data.find_list("a").config["username"] == "someone"
        assert source.calls == ["a"]
        assert store.saves == 0

    asyncio.run(runner())


def test_update_unknown_list_raises() -> None:
    manager, _, _ = build_manager([], [])

    with pytest.raises(ListNotFoundError):
        asyncio.run(manager.update_list("missing", SourceListUpdate(alias="x")))


def test_delete_list_prunes_without_refreshing() -> None:
    async def runner() -> None:
        slot = CatalogSlot(
            id="one", alias="One", list_ids=["a", "b"], current_selection=showing("a")
        )
        manager, store, source = build_manager([make_list("a"), make_list("b")], [slot])

        await manager.delete_list("a")

        assert [item.id for item in store.lists] == ["b"]
        assert slot.list_ids == ["b"]
        assert slot.active_source_id == "a"
        assert source.calls == []
        assert store.saves == 1

    asyncio.run(runner())


def test_add_slot_selects_matching_lists_and_refreshes() -> None:
    async def runner() -> None:
        manager, store, _ = build_manager(
            [make_list("a"), make_list("s", content_type="series"), make_list("b")], []
        )

        slot, result = await manager.add_slot(SlotDraft(alias="Movies"))

        assert slot.list_ids == ["a", "b"]
        assert slot.content_type == "movie"
        assert result.success
        assert slot.active_source_id in {"a", "b"}
        assert store.slots == [slot]

    asyncio.run(runner())


def test_update_slot_refreshes_when_active_list_removed() -> None:
    async def runner() -> None:
        slot = CatalogSlot(
            id="one", alias="One", list_ids=["a", "b"], current_selection=showing("a")
        )
        manager, _, source = build_manager([make_list("a"), make_list("b")], [slot])

        result = await manager.update_slot("one", SlotUpdate(list_ids=["b"]))

        assert result is not None and result.success
        assert slot.active_source_id == "b"
        assert source.calls == ["b"]

    asyncio.run(runner())


def test_update_slot_keeps_selection_for_cosmetic_changes() -> None:
    async def runner() -> None:
        slot = CatalogSlot(
            id="one", alias="One", list_ids=["a", "b"], current_selection=showing("a")
        )
        manager, store, source = build_manager([make_list("a"), make_list("b")], [slot])

        result = await manager.update_slot(
            "one", SlotUpdate(alias="Renamed", list_ids=["a"])
        )

        assert result is None
        assert slot.alias == "Renamed"
        assert slot.active_source_id == "a"
        assert source.calls == []
        assert store.saves == 1

    asyncio.run(runner())


def test_update_slot_drops_unknown_list_ids() -> None:
    async def runner() -> None:
        slot = CatalogSlot(
            id="one", alias="One", list_ids=["a"], current_selection=showing("a")
        )
        manager, store, source = build_manager([make_list("a")], [slot])

        result = await manager.update_slot("one", SlotUpdate(list_ids=["a", "ghost"]))

        assert result is None
        assert slot.list_ids == ["a"]
        assert source.calls == []
        assert store.saves == 1

    asyncio.run(runner())


def test_update_slot_with_only_unknown_lists_is_skipped_by_batch() -> None:
    async def runner() -> None:
        slot = CatalogSlot(
            id="one", alias="One", list_ids=["a"], current_selection=showing("a")
        )
        manager, _, _ = build_manager([make_list("a")], [slot])
        engine = manager._engine

        result = await manager.update_slot("one", SlotUpdate(list_ids=["ghost"]))
        batch = await engine.refresh_all_slots()

        assert slot.list_ids == []
        assert result is not None and result.status == "no_candidates"
        assert batch == []

    asyncio.run(runner())


def test_update_slot_refreshes_on_type_change() -> None:
    async def runner() -> None:
        slot = CatalogSlot(
            id="one", alias="One", list_ids=["a", "s"], current_selection=showing("a")
        )
        manager, _, _ = build_manager(
            [make_list("a"), make_list("s", content_type="series")], [slot]
        )

        result = await manager.update_slot("one", SlotUpdate(content_type="series"))

        assert result is not None and result.success
        assert slot.content_type == "series"
        assert slot.active_source_id == "s"

    asyncio.run(runner())


def test_delete_slot() -> None:
    async def runner() -> None:
        slot = CatalogSlot(id="one", alias="One", list_ids=["a"])
        manager, store, _ = build_manager([make_list("a")], [slot])

        await manager.delete_slot("one")

        assert store.slots == []
        assert [item.id for item in store.lists] == ["a"]
        with pytest.raises(SlotNotFoundError):
            await manager.delete_slot("one")

    asyncio.run(runner())
