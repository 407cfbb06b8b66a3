"""Pydantic models describing the persisted lists, slots and selections."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .config import DEFAULT_ITEM_LIMIT, DEFAULT_REFRESH_INTERVAL_HOURS

ContentType = Literal["movie", "series"]


class SourceType(str, Enum):
    """Kinds of upstream list a source can point at."""

    TRAKT_USER_LIST = "trakt_user_list"
    DEFAULT_LIST = "default_list"
    MDBLIST_LIST = "mdblist_list"
    PLEX_COLLECTION = "plex_collection"


class MetaItem(BaseModel):
    """Represents a single media entry returned to Stremio."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: ContentType
    name: str
    poster: str | None = None
    description: str | None = None
    background: str | None = None

    def to_meta(self) -> dict[str, Any]:
        """Return a Stremio-compatible meta preview."""

        return self.model_dump(exclude_none=True)


class Selection(BaseModel):
    """The list currently shown by a slot together with its rendered items."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    source_type: str = Field(alias="sourceType")
    source_id: str | None = Field(default=None, alias="sourceId")
    items: list[MetaItem] = Field(default_factory=list)


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class SourceListFields(BaseModel):
    """Fields shared by stored source lists and creation payloads."""

    model_config = ConfigDict(populate_by_name=True)

    alias: str = Field(min_length=1, max_length=200)
    type: SourceType
    content_type: ContentType = Field(default="movie", alias="contentType")
    config: dict[str, Any] = Field(default_factory=dict)
    shuffle: bool = False
    limit: int | None = Field(default=None, ge=1, le=1_000)
    group: str | None = None

    @field_validator("alias", mode="before")
    @classmethod
    def _strip_alias(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("group", mode="before")
    @classmethod
    def _normalise_group(cls, value: object) -> object:
        return _blank_to_none(value)

    @field_validator("limit", mode="before")
    @classmethod
    def _zero_limit_means_default(cls, value: object) -> object:
        if value in (0, "0", ""):
            return None
        return value

    def effective_limit(self, default_limit: int) -> int:
        return self.limit or default_limit


class SourceListDraft(SourceListFields):
    """Payload used to create a new source list."""


class SourceList(SourceListFields):
    """A configured reference to an upstream provider list."""

    id: str


class SourceListUpdate(BaseModel):
    """Partial update for a source list; only supplied fields are applied."""

    model_config = ConfigDict(populate_by_name=True)

    alias: str | None = Field(default=None, min_length=1, max_length=200)
    type: SourceType | None = None
    content_type: ContentType | None = Field(default=None, alias="contentType")
    config: dict[str, Any] | None = None
    shuffle: bool | None = None
    limit: int | None = Field(default=None, ge=1, le=1_000)
    group: str | None = None

    @field_validator("group", mode="before")
    @classmethod
    def _normalise_group(cls, value: object) -> object:
        return _blank_to_none(value)

    @field_validator("limit", mode="before")
    @classmethod
    def _zero_limit_means_default(cls, value: object) -> object:
        if value in (0, "0", ""):
            return None
        return value

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class CatalogSlot(BaseModel):
    """A stable catalog whose content rotates among its source lists."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    alias: str
    content_type: ContentType = Field(
        default="movie",
        validation_alias=AliasChoices("contentType", "type"),
        serialization_alias="contentType",
    )
    list_ids: list[str] = Field(default_factory=list, alias="listIds")
    current_selection: Selection | None = Field(
        default=None, alias="currentSelection"
    )

    @field_validator("list_ids")
    @classmethod
    def _unique_list_ids(cls, value: list[str]) -> list[str]:
        return _dedupe(value)

    @property
    def active_source_id(self) -> str | None:
        if self.current_selection is None:
            return None
        return self.current_selection.source_id


class SlotDraft(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    alias: str = Field(min_length=1, max_length=200)
    content_type: ContentType = Field(
        default="movie",
        validation_alias=AliasChoices("contentType", "type"),
    )


class SlotUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    alias: str | None = Field(default=None, min_length=1, max_length=200)
    content_type: ContentType | None = Field(
        default=None,
        validation_alias=AliasChoices("contentType", "type"),
    )
    list_ids: list[str] | None = Field(default=None, alias="listIds")

    @field_validator("list_ids")
    @classmethod
    def _unique_list_ids(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return _dedupe(value)


class AppSettings(BaseModel):
    """Runtime settings editable from the management API."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_interval_hours: int = Field(
        default=DEFAULT_REFRESH_INTERVAL_HOURS, ge=0, alias="refreshIntervalHours"
    )
    default_item_limit: int = Field(
        default=DEFAULT_ITEM_LIMIT, ge=1, le=1_000, alias="defaultItemLimit"
    )


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_interval_hours: int | None = Field(
        default=None, ge=0, alias="refreshIntervalHours"
    )
    default_item_limit: int | None = Field(
        default=None, ge=1, le=1_000, alias="defaultItemLimit"
    )

    def changes(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


class ConfigData(BaseModel):
    """The whole persisted configuration blob."""

    model_config = ConfigDict(populate_by_name=True)

    lists: list[SourceList] = Field(default_factory=list)
    slots: list[CatalogSlot] = Field(default_factory=list)
    settings: AppSettings = Field(default_factory=AppSettings)

    def find_slot(self, slot_id: str) -> CatalogSlot | None:
        return next((slot for slot in self.slots if slot.id == slot_id), None)

    def find_list(self, list_id: str) -> SourceList | None:
        return next((item for item in self.lists if item.id == list_id), None)

    def lists_of_type(self, content_type: str) -> list[SourceList]:
        return [item for item in self.lists if item.content_type == content_type]

    def to_document(self) -> dict[str, Any]:
        """Serialise the configuration using the persisted camelCase keys."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
