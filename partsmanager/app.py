"""
FastAPI application entry point for the sync backend.
"""

from __future__ import annotations

from fastapi import FastAPI

from partsmanager.config import get_settings
from partsmanager.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="PartsManager Sync Backend", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
