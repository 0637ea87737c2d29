"""
Migration Runner - Applies Alembic migrations at application startup.

alembic/env.py drives an async engine with asyncio.run(), so run_migrations()
must be called from a thread without a running event loop.
"""

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory

from guitar_dice.config import settings
from guitar_dice.observability.logging import get_logger

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def get_alembic_config(database_url: str | None = None) -> Config:
    """Alembic config pointed at DATABASE_URL (or an explicit URL)."""
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option(
        "script_location", str(ALEMBIC_INI_PATH.parent / "alembic")
    )
    url = database_url or settings.database_url
    alembic_cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return alembic_cfg


def get_head_revision(alembic_cfg: Config) -> str | None:
    """Get the head revision from migration scripts."""
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def run_migrations(database_url: str | None = None) -> None:
    """
    Upgrade the database to the head revision.

    Raises:
        RuntimeError: If the upgrade fails
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    alembic_cfg = get_alembic_config(database_url)
    head = get_head_revision(alembic_cfg)
    logger.info("migrations_starting", head_revision=head)

    try:
        command.upgrade(alembic_cfg, "head")
    except Exception as e:
        logger.error("migrations_failed", head_revision=head, error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e

    logger.info("migrations_complete", head_revision=head)
