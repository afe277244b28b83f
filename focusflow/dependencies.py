"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from fastapi import Request

from focusflow.config import Settings
from focusflow.db import DbClient, InMemoryDbClient, PostgresDbClient

logger = logging.getLogger(__name__)


def build_db_client(settings: Settings) -> DbClient:
    """
    Construct the store described by ``settings``. The caller owns it and
    must ``close()`` it on shutdown.
    """
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory store")
        return InMemoryDbClient()
    logger.info("Using SQL store")
    return PostgresDbClient(settings.database_url)


def get_db_client(request: Request) -> DbClient:
    """Return the store opened for this application."""
    return request.app.state.db
