#!/usr/bin/env python3
"""
Database migration script for deployments.

Runs the Alembic migrations in-process against DATABASE_URL (or the
development SQLite file). ``--url`` points it at another database.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config as AlembicConfig
from sqlalchemy.exc import SQLAlchemyError

from marginalia.database import get_database_url

BACKEND_DIR = Path(__file__).resolve().parent

logger = logging.getLogger("marginalia.migrate")


def alembic_config(database_url: Optional[str] = None, configure_logger: bool = True) -> AlembicConfig:
    config = AlembicConfig(str(BACKEND_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    config.set_main_option("sqlalchemy.url", database_url or get_database_url())
    config.attributes["configure_logger"] = configure_logger
    return config


def run_migrations(database_url: Optional[str] = None, revision: str = "head", configure_logger: bool = True) -> int:
    """Upgrade the annotation schema to ``revision``. Returns a process exit code."""
    config = alembic_config(database_url, configure_logger)
    logger.info("Running database migrations up to %s", revision)

    try:
        command.upgrade(config, revision)
    except (SQLAlchemyError, OSError) as e:
        logger.error("Migration failed: %s", e)
        return 1

    logger.info("Migrations completed successfully")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Apply annotation store migrations")
    parser.add_argument("--url", help="Database URL (defaults to DATABASE_URL)")
    parser.add_argument("--revision", default="head", help="Target revision")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return run_migrations(args.url, args.revision)


if __name__ == "__main__":
    sys.exit(main())
