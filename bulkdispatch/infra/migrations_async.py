# bulkdispatch/infra/migrations_async.py
"""
Async database migrations runner (asyncpg).
"""
from __future__ import annotations
from pathlib import Path

from bulkdispatch.infra.db_async import db_conn
from bulkdispatch.infra.logging_config import get_logger

logger = get_logger(__name__)


def _sql_dir() -> Path:
    """Migrations live next to this file: bulkdispatch/infra/sql"""
    return Path(__file__).resolve().parent / "sql"


def list_migrations(sql_dir: Path | None = None) -> list[Path]:
    """Migration files in apply order (alphabetical: 001_..., 002_...)."""
    sql_dir = sql_dir or _sql_dir()
    return sorted(p for p in sql_dir.glob("*.sql") if p.is_file())


async def apply_migrations(sql_dir: Path | None = None) -> dict:
    """
    Apply pending SQL migrations inside one transaction.

    Already applied migrations are tracked in the schema_migrations table.

    Returns:
        dict with keys:
            - ok: bool
            - applied: list[str] (migration filenames applied in this run)
            - count: int
    """
    files = list_migrations(sql_dir)

    async with db_conn(autocommit=False) as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations(
              version text PRIMARY KEY,
              applied_at timestamptz NOT NULL DEFAULT now()
            )
            """
        )

        rows = await conn.fetch("SELECT version FROM schema_migrations")
        applied = {row['version'] for row in rows}

        applied_now = []
        for p in files:
            version = p.name
            if version in applied:
                logger.debug(f"Migration {version} already applied, skipping")
                continue

            logger.info(f"Applying migration: {version}")
            await conn.execute(p.read_text(encoding="utf-8"))
            await conn.execute(
                "INSERT INTO schema_migrations(version) VALUES ($1)",
                version
            )
            applied_now.append(version)

    logger.info(f"Migrations complete: {len(applied_now)} applied")
    return {"ok": True, "applied": applied_now, "count": len(applied_now)}


async def schema_is_current(sql_dir: Path | None = None) -> bool:
    """True when every migration file has been applied."""
    expected = {p.name for p in list_migrations(sql_dir)}
    async with db_conn() as conn:
        exists = await conn.fetchval("SELECT to_regclass('schema_migrations')")
        if exists is None:
            return not expected
        rows = await conn.fetch("SELECT version FROM schema_migrations")
    return expected <= {row['version'] for row in rows}
