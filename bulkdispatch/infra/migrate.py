#!/usr/bin/env python3
# bulkdispatch/infra/migrate.py
"""
Standalone migration runner.

    python -m bulkdispatch.infra.migrate            # apply pending migrations
    python -m bulkdispatch.infra.migrate --check    # exit 1 if any are pending
    python -m bulkdispatch.infra.migrate --dsn postgresql://...

Run before starting the service; the application checks the schema at
startup but never migrates by itself.
"""
import argparse
import asyncio
import sys

from bulkdispatch.infra.migrations_async import apply_migrations, list_migrations, schema_is_current
from bulkdispatch.infra.db_async import init_pool, close_pool
from bulkdispatch.infra.logging_config import setup_logging, get_logger
from bulkdispatch.config import settings

logger = get_logger(__name__)


async def run(check_only: bool = False, dsn: str | None = None) -> int:
    logger.info(f"Migrations: env={settings.app_env}, files={len(list_migrations())}")

    try:
        await init_pool(dsn)
        if check_only:
            current = await schema_is_current()
            logger.info("Schema is current" if current else "Schema has pending migrations")
            return 0 if current else 1
        result = await apply_migrations()
    except Exception as exc:
        logger.critical(f"Migration failed: {exc}", exc_info=True)
        return 1
    finally:
        await close_pool()

    for migration in result['applied']:
        logger.info(f"  applied {migration}")
    if not result['applied']:
        logger.info("No new migrations to apply")

    return 0 if result['ok'] else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Apply bulkdispatch SQL migrations")
    parser.add_argument("--check", action="store_true", help="Only report whether migrations are pending")
    parser.add_argument("--dsn", help="PostgreSQL DSN (defaults to DATABASE_URL / PG* settings)")
    args = parser.parse_args(argv)

    setup_logging(level="INFO", use_json=False)
    return asyncio.run(run(check_only=args.check, dsn=args.dsn))


if __name__ == "__main__":
    sys.exit(main())
