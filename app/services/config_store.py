"""Persistence of the lists/slots/settings blob."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import ConfigDocument
from ..models import AppSettings, CatalogSlot, ConfigData, SourceList

logger = logging.getLogger(__name__)


class ConfigStore:
    """Holds the in-memory configuration and rewrites it in full on save.

    Every mutating top-level operation must hold ``write_lock`` across its
    read-decide-write sequence; readers never take it.
    """

    DOCUMENT_ID = "default"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        default_settings: AppSettings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._default_settings = default_settings or AppSettings()
        self._data = self._empty()
        self.write_lock = asyncio.Lock()

    @property
    def data(self) -> ConfigData:
        return self._data

    @property
    def lists(self) -> list[SourceList]:
        return self._data.lists

    @property
    def slots(self) -> list[CatalogSlot]:
        return self._data.slots

    @property
    def settings(self) -> AppSettings:
        return self._data.settings

    def _empty(self) -> ConfigData:
        return ConfigData(settings=self._default_settings.model_copy())

    async def load(self) -> ConfigData:
        """Load the persisted blob, falling back to an empty configuration."""

        try:
            async with self._session_factory() as session:
                record = await session.get(ConfigDocument, self.DOCUMENT_ID)
        except (SQLAlchemyError, ValueError):
            logger.exception("Error loading configuration, starting empty")
            self._data = self._empty()
            return self._data

        if record is None:
            logger.info("No stored configuration found, starting empty")
            self._data = self._empty()
            return self._data

        try:
            self._data = self._parse(record.payload)
        except ValueError as exc:
            logger.error("Stored configuration is corrupt, starting empty: %s", exc)
            self._data = self._empty()
        logger.info(
            "Loaded configuration with %s lists and %s slots",
            len(self._data.lists),
            len(self._data.slots),
        )
        return self._data

    def _parse(self, payload: Any) -> ConfigData:
        if not isinstance(payload, dict):
            raise ValueError("configuration document must be an object")

        stored_settings = payload.get("settings")
        if not isinstance(stored_settings, dict):
            stored_settings = {}
        settings_payload = {
            **self._default_settings.model_dump(by_alias=True),
            **{key: value for key, value in stored_settings.items() if value is not None},
        }
        lists = payload.get("lists")
        slots = payload.get("slots")
        return ConfigData.model_validate(
            {
                "lists": lists if isinstance(lists, list) else [],
                "slots": slots if isinstance(slots, list) else [],
                "settings": settings_payload,
            }
        )

    async def save(self) -> bool:
        """Persist the whole configuration; failures are logged, not raised."""

        document = self._data.to_document()
        try:
            async with self._session_factory() as session:
                # The stored payload is never decoded, so a corrupt row is overwritten.
                result = await session.execute(
                    update(ConfigDocument)
                    .where(ConfigDocument.id == self.DOCUMENT_ID)
                    .values(payload=document)
                )
                if result.rowcount == 0:
                    session.add(ConfigDocument(id=self.DOCUMENT_ID, payload=document))
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Error saving configuration")
            return False
        return True

    async def update_settings(self, changes: dict[str, Any]) -> AppSettings:
        """Merge validated setting changes and persist them."""

        async with self.write_lock:
            merged = {**self._data.settings.model_dump(), **changes}
            self._data.settings = AppSettings.model_validate(merged)
            await self.save()
            return self._data.settings
