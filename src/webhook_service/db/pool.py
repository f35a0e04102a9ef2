"""Asyncpg connection pool helpers."""
from __future__ import annotations

from typing import Any

import asyncpg  # type: ignore[import-untyped]
import structlog

from webhook_service.core.exceptions import StoreUnavailableError
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

pool: asyncpg.Pool | None = None


async def init_pool(_app: Any = None) -> None:
    """Initialize global asyncpg pool (``app.on_startup`` compatible)."""
    global pool
    if pool is None:
        pool = await asyncpg.create_pool(
            dsn=str(settings.database_url),
            max_size=settings.db_pool_size,
        )
        logger.info("db_pool initialized", max_size=settings.db_pool_size)


async def close_pool(_app: Any = None) -> None:
    """Close pool on shutdown."""
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def get_pool() -> asyncpg.Pool:
    """Return the initialized pool, creating it lazily."""
    global pool
    if pool is None:
        try:
            await init_pool()
        except (OSError, asyncpg.PostgresError) as exc:
            raise StoreUnavailableError(f"Database is unreachable: {exc}") from exc
    assert pool is not None  # for type checkers
    return pool
