#!/usr/bin/env python3
"""
Database Migration — Create the tenant, call history and attempt tables.

Usage:
    # Create missing tables:
    python scripts/migrate_db.py

    # Report missing tables without changing anything (exit 1 if any):
    python scripts/migrate_db.py --check
"""
import asyncio
import os
import sys
import argparse

import structlog

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logger = structlog.get_logger()


async def run_migration(check_only: bool = False, config_path: str = None) -> list[str]:
    """Returns the table names that were missing before the run."""
    from config.settings import load_settings
    from database import session

    settings = load_settings(config_path)
    session.configure(settings.database.url)

    try:
        missing = await session.missing_tables()
        logger.info("migration_status",
                    dialect=session.get_engine().dialect.name,
                    existing=await session.existing_tables(),
                    missing=missing)
        if check_only or not missing:
            return missing

        await session.init_db()
        logger.info("migration_complete", created=missing)
        return missing
    finally:
        await session.close_db()


def main():
    parser = argparse.ArgumentParser(description="Create the DialQueue database tables")
    parser.add_argument("--check", action="store_true", help="Only report missing tables")
    parser.add_argument("--config", help="Path to settings.yaml")
    args = parser.parse_args()

    missing = asyncio.run(run_migration(check_only=args.check, config_path=args.config))
    if args.check:
        print("Missing tables: " + (", ".join(missing) if missing else "(none)"))
        if missing:
            sys.exit(1)


if __name__ == "__main__":
    main()
