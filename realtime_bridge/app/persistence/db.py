"""Shared asyncpg pool for catalog reads and tool-call writes."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

import asyncpg

from ..config import settings

_LOGGER = logging.getLogger(__name__)
_pool: asyncpg.Pool | None = None


def persistence_enabled() -> bool:
    """Returns whether a database is configured for this process."""
    return bool(settings.DB_CONNECTION_STRING)


async def init_pool() -> asyncpg.Pool:
    """Creates the process pool on first use and returns it afterwards.

    Raises:
        RuntimeError: If no connection string is configured.
    """
    global _pool
    if _pool is not None:
        return _pool
    if not settings.DB_CONNECTION_STRING:
        raise RuntimeError("DB_CONNECTION_STRING is required for bridge persistence")
    _pool = await asyncpg.create_pool(
        settings.DB_CONNECTION_STRING,
        min_size=1,
        max_size=settings.DB_POOL_MAX_SIZE,
    )
    _LOGGER.info("Bridge DB pool ready.", extra={"max_size": settings.DB_POOL_MAX_SIZE})
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is None:
        return
    pool, _pool = _pool, None
    await pool.close()
    _LOGGER.debug("Bridge DB pool closed.")


@contextlib.asynccontextmanager
async def get_conn() -> AsyncIterator[asyncpg.Connection]:
    """Yields a pooled connection for one statement or short read."""
    pool = await init_pool()
    async with pool.acquire() as conn:
        yield conn


@contextlib.asynccontextmanager
async def transaction() -> AsyncIterator[asyncpg.Connection]:
    """Yields a pooled connection inside a transaction block."""
    async with get_conn() as conn:
        async with conn.transaction():
            yield conn
