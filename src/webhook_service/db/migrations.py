"""SQL migration helpers used on startup and by ``bin/migrate.py``."""
from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Awaitable, Callable, Iterable

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

PendingMigration = tuple[str, Path, str, str]  # version, path, sql, checksum


async def ensure_schema_table(conn: asyncpg.Connection) -> None:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )


def load_migrations(directory: Path) -> dict[str, Path]:
    if not directory.exists():
        raise FileNotFoundError(f"Migrations directory does not exist: {directory}")
    migrations: dict[str, Path] = {}
    for path in sorted(directory.glob("*.sql")):
        version = path.stem
        if version in migrations:
            raise ValueError(f"Duplicate migration version detected: {version}")
        migrations[version] = path
    return migrations


async def find_pending(
    conn: asyncpg.Connection, migrations: dict[str, Path]
) -> list[PendingMigration]:
    await ensure_schema_table(conn)
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    applied = {row["version"]: row["checksum"] for row in rows}
    pending: list[PendingMigration] = []
    for version, path in migrations.items():
        sql = path.read_text(encoding="utf-8")
        checksum = hashlib.sha256(sql.encode("utf-8")).hexdigest()
        if version in applied:
            if applied[version] != checksum:
                raise RuntimeError(
                    f"Checksum mismatch for {version}: "
                    f"{applied[version]} (db) != {checksum} (file)"
                )
            continue
        pending.append((version, path, sql, checksum))
    return pending


async def apply_pending(conn: asyncpg.Connection, pending: list[PendingMigration]) -> None:
    for version, path, sql, checksum in pending:
        logger.info("applying migration", migration=path.name)
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                version,
                checksum,
            )


def create_migration_runner(
    database_url: str,
    possible_paths: Iterable[Path],
    *,
    max_retries: int = 5,
    retry_delay: float = 2.0,
) -> Callable[[web.Application], Awaitable[None]]:
    """Build an ``app.on_startup`` hook applying pending SQL migrations."""
    paths = list(possible_paths)

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        migrations_dir = next((p for p in paths if p.exists()), None)
        if migrations_dir is None:
            logger.warning("migrations directory not found, skipping", tried=[str(p) for p in paths])
            return
        migrations = load_migrations(migrations_dir)
        if not migrations:
            logger.warning("no migrations found, skipping", directory=str(migrations_dir))
            return

        conn = None
        for attempt in range(1, max_retries + 1):
            try:
                conn = await asyncpg.connect(database_url)
                break
            except (OSError, asyncpg.PostgresError) as exc:
                logger.warning(
                    "database connection failed",
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(exc),
                )
                if attempt < max_retries:
                    await asyncio.sleep(retry_delay)
        if conn is None:
            logger.error("could not connect to database, skipping migrations")
            return

        try:
            pending = await find_pending(conn, migrations)
            if not pending:
                logger.info("no pending migrations")
                return
            await apply_pending(conn, pending)
            logger.info("migrations applied", count=len(pending))
        finally:
            await conn.close()

    return apply_migrations_on_startup
