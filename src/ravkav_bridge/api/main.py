from typing import Optional
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from ravkav_bridge.api.exceptions import (
    BridgeException,
    bridge_exception_handler,
    request_validation_exception_handler,
    general_exception_handler
)
from ravkav_bridge.api.routes import create_router
from ravkav_bridge.clients.ravkav_client import UpstreamClient
from ravkav_bridge.config.settings import Settings, settings
from ravkav_bridge.services.bridge_service import BridgeService
from ravkav_bridge.services.export_pipeline import ExportPipeline
from ravkav_bridge.services.renderer import PageRenderer, PlaywrightRenderer
from ravkav_bridge.services.session_store import InMemorySessionStore, SessionStore


def create_app(
    config: Optional[Settings] = None,
    store: Optional[SessionStore] = None,
    client: Optional[UpstreamClient] = None,
    renderer: Optional[PageRenderer] = None,
) -> FastAPI:
    config = config or settings

    app = FastAPI(
        title="RavKav Bridge",
        description="Login bridge and transaction export for the Rav-Kav online portal",
        version="0.1.0"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BridgeException, bridge_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    if store is None:
        store = InMemorySessionStore(ttl_seconds=config.session_ttl_seconds)
    if client is None:
        client = UpstreamClient(config)
    if renderer is None:
        renderer = PlaywrightRenderer(config)
    pipeline = ExportPipeline(renderer, config)
    app.state.settings = config
    app.state.bridge = BridgeService(store, client, pipeline)

    app.include_router(create_router())
    return app


app = create_app()
