"""
FastAPI application entry point for the FocusFlow backend.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from focusflow import __version__
from focusflow.config import get_settings
from focusflow.db import DbClient
from focusflow.dependencies import build_db_client
from focusflow.errors import register_error_handlers
from focusflow.routes import router

access_logger = logging.getLogger("focusflow.access")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Stores injected through create_app() belong to the caller.
    if getattr(app.state, "db", None) is not None:
        yield
        return
    app.state.db = build_db_client(get_settings())
    try:
        yield
    finally:
        app.state.db.close()
        app.state.db = None


def create_app(db: Optional[DbClient] = None) -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="FocusFlow API", version=__version__, lifespan=lifespan)
    app.state.db = db

    origins = settings.cors_origin_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["X-Total-Count"],
        max_age=86400,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        access_logger.info(
            "%s %s %d %.1f ms",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    register_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)

    @app.get("/")
    def root():
        prefix = settings.api_prefix
        return {
            "name": "FocusFlow API",
            "version": __version__,
            "description": "Backend API for FocusFlow task management application",
            "endpoints": {
                "health": f"{prefix}/health",
                "projects": f"{prefix}/projects",
                "goals": f"{prefix}/goals",
                "tasks": f"{prefix}/tasks",
                "sync": f"{prefix}/sync",
            },
        }

    return app


app = create_app()
