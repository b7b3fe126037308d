"""Bring the database schema to head.

Databases created by ``Base.metadata.create_all`` (the app does this on
startup) have the tables but no ``alembic_version`` row; those are stamped
first so the initial migration is not replayed on top of them.
"""
import logging
import os
import sys

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from sealshare.core.database import DATABASE_URL

logger = logging.getLogger("sealshare.db_migrate")

CORE_TABLES = ("users", "shares", "activity_logs")
ALEMBIC_INI = os.path.join(os.path.dirname(__file__), "..", "..", "alembic.ini")


def alembic_config(ini_path: str = ALEMBIC_INI) -> Config:
    cfg = Config(os.path.abspath(ini_path))
    cfg.set_main_option("script_location", os.path.join(os.path.dirname(os.path.abspath(ini_path)), "alembic"))
    return cfg


def needs_stamp(url: str = DATABASE_URL) -> bool:
    engine = create_engine(url.replace("+aiosqlite", ""))
    try:
        insp = inspect(engine)
        has_alembic = insp.has_table("alembic_version")
        existing = [t for t in CORE_TABLES if insp.has_table(t)]
    finally:
        engine.dispose()
    logger.info("has_alembic=%s existing_core_tables=%s", has_alembic, existing)
    return bool(existing) and not has_alembic


def main():
    cfg = alembic_config()
    if needs_stamp():
        logger.info("Existing tables detected without alembic_version, stamping head")
        command.stamp(cfg, "head")
    command.upgrade(cfg, "head")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[db-migrate] %(message)s")
    try:
        main()
    except Exception as e:
        logger.error("Migration failed: %s", e)
        sys.exit(1)
