"""Shared asyncpg plumbing for repositories."""
from __future__ import annotations

from typing import Any, List

import asyncpg  # type: ignore[import-untyped]
from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import StoreUnavailableError

# Connection-level failures and server errors both mean the store cannot serve the call.
_STORE_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


class BaseRepository:
    def __init__(self, pool: Pool):
        self._pool = pool

    async def _fetch(self, query: str, *args: Any) -> List[Record]:
        try:
            return await self._pool.fetch(query, *args)
        except _STORE_ERRORS as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def _fetchrow(self, query: str, *args: Any) -> Record | None:
        try:
            return await self._pool.fetchrow(query, *args)
        except _STORE_ERRORS as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def _fetchval(self, query: str, *args: Any) -> Any:
        try:
            return await self._pool.fetchval(query, *args)
        except _STORE_ERRORS as exc:
            raise StoreUnavailableError(str(exc)) from exc

    async def _execute(self, query: str, *args: Any) -> str:
        try:
            return await self._pool.execute(query, *args)
        except _STORE_ERRORS as exc:
            raise StoreUnavailableError(str(exc)) from exc

    @staticmethod
    def _affected_rows(status: str) -> int:
        """Row count from a command tag such as ``UPDATE 3`` or ``INSERT 0 1``."""
        return int(status.split()[-1])
