"""Application startup validation and schema initialization."""
import logging
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

from app.settings import settings
from app.db import SessionLocal, engine
from app.services.diagnostics import run_diagnostics_backfill_once

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def validate_settings() -> None:
    """
    Validate all required settings at startup.

    Raises:
        ValueError: If required settings are missing or invalid
    """
    logger.info(f"Validating settings for ENV={settings.ENV}")
    settings.validate_required_for_env()
    if not settings.bearer_token:
        logger.warning("BEARER_TOKEN is not set; internal API endpoints will return 500")
    logger.info("✓ Settings validation passed")


def alembic_config() -> Config:
    """Alembic config for the migrations shipped beside the ``app`` package."""
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    return config


def current_revision(connection: Connection) -> Optional[str]:
    return MigrationContext.configure(connection).get_current_revision()


def upgrade_schema(bind: Engine, target: str = "head") -> list[str]:
    """
    Run pending alembic revisions against ``bind``.

    Databases created before migrations were versioned are adopted in
    place: revisions only create the tables and columns they lack.

    Returns:
        A human-readable description of the change
    """
    config = alembic_config()
    with bind.begin() as connection:
        before = current_revision(connection)
        config.attributes["connection"] = connection
        command.upgrade(config, target)
        after = current_revision(connection)

    if before == after:
        return [f"Schema already at revision {after}"]
    logger.info(f"✓ Schema upgraded from {before or 'base'} to {after}")
    return [f"Upgraded schema from {before or 'base'} to {after}"]


def run_migrations(db: Session) -> list[str]:
    """
    Bring the schema up to date and run the one-time diagnostics backfill.

    Idempotent; the returned list describes each step taken.
    """
    results = upgrade_schema(db.get_bind())

    if run_diagnostics_backfill_once(db):
        results.append("Backfilled legacy diagnostics")
    else:
        results.append("Diagnostics backfill already done")

    return results


def run_startup() -> None:
    """
    Validate configuration and prepare the database.

    Called from the application lifespan; fails fast on invalid settings.

    Raises:
        Exception: If any validation fails
    """
    logger.info("=" * 60)
    logger.info("Starting application startup")
    logger.info("=" * 60)

    try:
        validate_settings()

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("✓ Database connection successful")

        if settings.RUN_STARTUP_MIGRATIONS:
            db = SessionLocal()
            try:
                for result in run_migrations(db):
                    logger.info(f"Migration: {result}")
            finally:
                db.close()
        else:
            logger.info("Startup migrations disabled; run `alembic upgrade head` to update the schema")

        logger.info("✓ Startup complete")

    except Exception as e:
        logger.error("✗ Startup failed")
        logger.error(f"Error: {e}")
        raise
