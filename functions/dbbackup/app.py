"""
FastAPI application entry point for the backup service.
"""

from __future__ import annotations

from fastapi import FastAPI

from dbbackup.config import get_settings
from dbbackup.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Database Backup", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
