from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chat_markers.api import collections as collections_api
from chat_markers.api import markers as markers_api
from chat_markers.api import scan as scan_api
from chat_markers.api import websocket as websocket_api
from chat_markers.core.config import Settings, get_settings
from chat_markers.core.logging import setup_logging
from chat_markers.db.base import create_engine, create_sessionmaker, init_db
from chat_markers.repos.marker_store import MarkerStore
from chat_markers.services.marker_service import MarkerService
from chat_markers.services.registry_service import CollectionRegistry
from chat_markers.storage.base import KeyValueStore
from chat_markers.storage.factory import create_key_value_store


def create_app(
    settings: Optional[Settings] = None, store: Optional[KeyValueStore] = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``store`` replaces the configured storage backend, for hosts that own persistence.
    """

    settings = settings or get_settings()
    setup_logging(settings.log_level)

    engine = None
    sessionmaker = None
    if store is None and settings.store_backend.strip().lower() != "memory":
        engine = create_engine(settings.db_url)
        sessionmaker = create_sessionmaker(engine)
    kv_store = store or create_key_value_store(settings=settings, sessionmaker=sessionmaker)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            await init_db(engine)
        yield
        await kv_store.close()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title="chat-markers", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.kv_store = kv_store
    app.state.change_notifier = websocket_api.ChangeNotifier()
    app.state.marker_store = MarkerStore(
        kv_store, soft_limit_bytes=settings.storage_soft_limit_bytes
    )
    app.state.collection_registry = CollectionRegistry(
        app.state.marker_store, app.state.change_notifier
    )
    app.state.marker_service = MarkerService(
        app.state.marker_store,
        app.state.collection_registry,
        app.state.change_notifier,
    )

    origins = settings.parsed_cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(markers_api.router)
    app.include_router(collections_api.router)
    app.include_router(websocket_api.router)
    app.include_router(scan_api.router)

    return app


def run() -> None:
    """Console entry point: serve the API with uvicorn."""

    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.app_host, port=settings.app_port)


if __name__ == "__main__":
    run()
