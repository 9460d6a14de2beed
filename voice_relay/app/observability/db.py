"""Connection-pool helpers for call observability writes."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

import asyncpg

from ..config import settings

_LOGGER = logging.getLogger(__name__)
_pool: asyncpg.Pool | None = None


def is_enabled() -> bool:
    """Returns whether call observability is configured for this process."""
    return bool(settings.DB_CONNECTION_STRING)


async def init_pool() -> asyncpg.Pool:
    """Creates the shared asyncpg pool on first use."""
    global _pool
    if _pool is None:
        if not settings.DB_CONNECTION_STRING:
            raise RuntimeError("DB_CONNECTION_STRING is required for call observability")
        _LOGGER.debug("Creating observability DB pool.")
        _pool = await asyncpg.create_pool(settings.DB_CONNECTION_STRING, min_size=1, max_size=5)
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        _LOGGER.debug("Closing observability DB pool.")
        await _pool.close()
        _pool = None


@contextlib.asynccontextmanager
async def get_conn() -> AsyncIterator[asyncpg.Connection]:
    """Yields a pooled connection for one observability write."""
    pool = _pool if _pool is not None else await init_pool()
    async with pool.acquire() as conn:
        yield conn
