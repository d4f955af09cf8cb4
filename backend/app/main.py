"""FastAPI app entrypoint for the demo tools backend.

The backend serves static booking, availability and weather fixtures so the
bridge's business tools can be exercised end to end.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .config import settings
from .routes.tools import router as tools_router

_LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Applies ``LOG_LEVEL`` to the root and backend loggers."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    if logging.getLogger().handlers:
        logging.getLogger().setLevel(level)
    else:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.getLogger("backend").setLevel(level)


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    if settings.TOOL_API_TOKEN:
        _LOGGER.info("Demo tool routes require a bearer token.")
    else:
        _LOGGER.warning("TOOL_API_TOKEN is empty; demo tool routes accept unauthenticated requests.")
    yield


def create_app() -> FastAPI:
    """Builds the demo tools application with its routes and health probe."""
    application = FastAPI(title="demo-tools", lifespan=_lifespan)
    application.include_router(tools_router)

    @application.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "backend"}

    return application


_configure_logging()
app = create_app()
