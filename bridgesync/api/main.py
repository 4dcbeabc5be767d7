"""
Main FastAPI application for the bridgesync system.
"""

from fastapi import FastAPI
from typing import Optional
import logging

from ..database import create_engine, create_session_factory, init_database
from ..config import Config, set_config
from ..services.bridge import Bridge
from .appservice import appservice_router
from .admin import admin_router

logger = logging.getLogger(__name__)


def create_app(app_config: Config, bridge: Optional[Bridge] = None) -> FastAPI:
    """
    Create FastAPI application.

    Without an explicit bridge, the database is initialized and a bridge
    talking to the configured homeserver and Discord is built.
    """
    set_config(app_config)

    app = FastAPI(
        title="bridgesync",
        description="Matrix <-> Discord room and user state synchronization",
        version="0.1.0"
    )

    if bridge is None:
        engine = create_engine(app_config.database)
        init_database(engine)
        bridge = Bridge.from_config(app_config, create_session_factory(engine))
    app.state.bridge = bridge

    app.include_router(appservice_router, prefix="/_matrix/app/v1", tags=["appservice"])

    if app_config.admin.enabled:
        app.include_router(admin_router, prefix="/admin", tags=["admin"])

    @app.get("/api/ping")
    async def ping():
        return {"message": "bridgesync is running"}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app
