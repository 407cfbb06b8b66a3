"""Entry point for the FastAPI-powered Stremio addon."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from . import __version__
from .config import settings
from .database import Database
from .exceptions import FailureKind, SourceError
from .models import (
    AppSettings,
    SettingsUpdate,
    SlotDraft,
    SlotUpdate,
    SourceListDraft,
    SourceListUpdate,
)
from .services.config_store import ConfigStore
from .services.imdb import ImdbChartClient
from .services.library import LibraryManager
from .services.mdblist import MdbListClient
from .services.plex import PlexClient
from .services.scheduler import RefreshScheduler
from .services.selection import SelectionEngine
from .services.sources import SourceRegistry
from .services.trakt import TraktClient

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    trakt_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.trakt_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    mdblist_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.mdblist_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    imdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=10.0), follow_redirects=True
        )
    )
    plex_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    )
    database = Database(settings.database_url)
    await database.create_all()

    store = ConfigStore(
        database.session_factory,
        default_settings=AppSettings(
            refresh_interval_hours=settings.default_refresh_interval_hours,
            default_item_limit=settings.default_item_limit,
        ),
    )
    await store.load()

    plex = PlexClient(settings, plex_http)
    registry = SourceRegistry.from_clients(
        trakt=TraktClient(settings, trakt_http),
        mdblist=MdbListClient(settings, mdblist_http),
        imdb=ImdbChartClient(settings, imdb_http),
        plex=plex,
    )
    engine = SelectionEngine(store, registry)
    scheduler = RefreshScheduler(engine, store)

    fastapi_app.state.database = database
    fastapi_app.state.config_store = store
    fastapi_app.state.selection_engine = engine
    fastapi_app.state.library = LibraryManager(store, registry, engine)
    fastapi_app.state.scheduler = scheduler
    fastapi_app.state.plex = plex
    await scheduler.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await scheduler.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Rotating Stremio catalogs backed by Trakt, MdbList, IMDB and Plex lists",
        version=__version__,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _service(fastapi_app: FastAPI, name: str) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if service is None:
        raise RuntimeError(f"{name} not initialised")
    return service


async def _read_payload(request: Request, model: type[BaseModel]) -> Any:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=json.loads(exc.json(include_url=False))
        ) from exc


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def register_routes(fastapi_app: FastAPI) -> None:
    def engine() -> SelectionEngine:
        return _service(fastapi_app, "selection_engine")

    def library() -> LibraryManager:
        return _service(fastapi_app, "library")

    def store() -> ConfigStore:
        return _service(fastapi_app, "config_store")

    def scheduler() -> RefreshScheduler:
        return _service(fastapi_app, "scheduler")

    def _catalog_response(catalog_id: str) -> JSONResponse:
        items = engine().get_items(catalog_id)
        return JSONResponse({"metas": [item.to_meta() for item in items]})

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/manifest.json")
    async def manifest() -> dict[str, Any]:
        return engine().get_manifest()

    @fastapi_app.get("/catalog/{content_type}/{catalog_id}.json")
    async def catalog(content_type: str, catalog_id: str) -> JSONResponse:
        return _catalog_response(catalog_id)

    # Extra segments (skip, genre) are accepted but the whole selection is served.
    @fastapi_app.get("/catalog/{content_type}/{catalog_id}/{extra}.json")
    async def catalog_with_extra(
        content_type: str, catalog_id: str, extra: str
    ) -> JSONResponse:
        return _catalog_response(catalog_id)

    @fastapi_app.get("/api/status")
    async def status() -> dict[str, Any]:
        return scheduler().to_payload()

    @fastapi_app.get("/api/settings")
    async def get_settings_endpoint() -> dict[str, Any]:
        return _dump(store().settings)

    @fastapi_app.post("/api/settings")
    async def update_settings_endpoint(request: Request) -> dict[str, Any]:
        update: SettingsUpdate = await _read_payload(request, SettingsUpdate)
        changes = update.changes()
        updated = await store().update_settings(changes)
        if "refresh_interval_hours" in changes:
            await scheduler().update_schedule(updated.refresh_interval_hours)
        return {"success": True, "settings": _dump(updated)}

    @fastapi_app.get("/api/lists")
    async def get_lists() -> list[dict[str, Any]]:
        return [_dump(item) for item in library().list_lists()]

    @fastapi_app.post("/api/lists")
    async def add_list(request: Request) -> dict[str, Any]:
        draft: SourceListDraft = await _read_payload(request, SourceListDraft)
        try:
            source = await library().add_list(draft)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _dump(source)

    @fastapi_app.put("/api/lists/{list_id}")
    async def update_list(list_id: str, request: Request) -> dict[str, Any]:
        update: SourceListUpdate = await _read_payload(request, SourceListUpdate)
        try:
            source, results = await library().update_list(list_id, update)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "success": True,
            "list": _dump(source),
            "refreshResults": [result.to_payload() for result in results],
        }

    @fastapi_app.delete("/api/lists/{list_id}")
    async def delete_list(list_id: str) -> dict[str, bool]:
        try:
            await library().delete_list(list_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"success": True}

    @fastapi_app.get("/api/slots")
    async def get_slots() -> list[dict[str, Any]]:
        return [_dump(slot) for slot in library().list_slots()]

    @fastapi_app.post("/api/slots")
    async def add_slot(request: Request) -> dict[str, Any]:
        draft: SlotDraft = await _read_payload(request, SlotDraft)
        slot, result = await library().add_slot(draft)
        return {**_dump(slot), "refreshResult": result.to_payload()}

    @fastapi_app.post("/api/slots/refresh-all")
    async def refresh_all() -> dict[str, Any]:
        results = await engine().refresh_all_slots()
        return {"success": True, "results": [result.to_payload() for result in results]}

    @fastapi_app.put("/api/slots/{slot_id}")
    async def update_slot(slot_id: str, request: Request) -> dict[str, Any]:
        update: SlotUpdate = await _read_payload(request, SlotUpdate)
        try:
            result = await library().update_slot(slot_id, update)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {
            "success": True,
            "refreshResult": result.to_payload() if result is not None else None,
        }

    @fastapi_app.delete("/api/slots/{slot_id}")
    async def delete_slot(slot_id: str) -> dict[str, bool]:
        try:
            await library().delete_slot(slot_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"success": True}

    @fastapi_app.post("/api/slots/{slot_id}/refresh")
    async def refresh_slot(slot_id: str) -> dict[str, Any]:
        try:
            result = await engine().refresh_slot(slot_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return result.to_payload()

    @fastapi_app.get("/api/plex/collections")
    async def plex_collections(type: str = "movie") -> list[dict[str, str]]:
        if type not in {"movie", "series"}:
            raise HTTPException(status_code=400, detail="Unsupported content type")
        plex: PlexClient = _service(fastapi_app, "plex")
        logger.info("Received request for Plex collections of type %s", type)
        try:
            return await plex.list_collections(type)  # type: ignore[arg-type]
        except SourceError as exc:
            status_code = 400 if exc.kind is FailureKind.INVALID_CONFIG else 502
            raise HTTPException(status_code=status_code, detail=exc.message) from exc


app = create_app()
