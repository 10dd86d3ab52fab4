"""Run the Alembic ``core`` chain from Python.

``teamcal migrate`` calls :func:`run_migrations` with the URL of the
configured database instead of shelling out to the ``alembic`` CLI.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from alembic.config import Config

from alembic import command

logger = logging.getLogger(__name__)

# alembic/ sits next to src/ at the repository root.
ALEMBIC_DIR = Path(__file__).resolve().parents[2] / "alembic"
VERSIONS_DIR = ALEMBIC_DIR / "versions" / "core"
CHAIN = "core"


def _build_alembic_config(db_url: str) -> Config:
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    config.set_main_option("version_locations", str(VERSIONS_DIR))
    # Config values go through configparser interpolation.
    config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    return config


def _upgrade_to_head(config: Config) -> None:
    logger.info("Upgrading schema to %s@head", CHAIN)
    command.upgrade(config, f"{CHAIN}@head")


async def run_migrations(db_url: str) -> None:
    """Upgrade the database at *db_url* to the latest revision.

    Alembic drives a synchronous SQLAlchemy engine, so the upgrade runs in a
    worker thread.
    """
    await asyncio.to_thread(_upgrade_to_head, _build_alembic_config(db_url))
