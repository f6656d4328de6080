"""
Startup migrations.

With RUN_MIGRATIONS_ON_STARTUP the app upgrades its own schema before it
serves; otherwise run ``alembic upgrade head`` as a deploy step.
"""

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine
from structlog import get_logger

from zone.config import settings

logger = get_logger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def sync_database_url() -> str:
    # Alembic's command API is synchronous.
    return settings.database_url.replace("+asyncpg", "+psycopg2")


def run_migrations() -> None:
    """Upgrade to head when the database is behind; a no-op otherwise."""
    if not ALEMBIC_INI.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI))
        return

    url = sync_database_url()
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    head = ScriptDirectory.from_config(config).get_current_head()

    engine = create_engine(url)
    try:
        with engine.connect() as conn:
            current = MigrationContext.configure(conn).get_current_revision()
        if current == head:
            logger.info("schema_current", revision=current)
            return
        logger.info("schema_upgrading", from_revision=current, to_revision=head)
        command.upgrade(config, "head")
    except Exception as e:
        logger.error("schema_upgrade_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
    finally:
        engine.dispose()
    logger.info("schema_upgraded", revision=head)
