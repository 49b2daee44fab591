"""Apply the questsync schema with Alembic from Python code."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from alembic.config import Config

from alembic import command

logger = logging.getLogger(__name__)

# <repo>/alembic, next to src/
ALEMBIC_DIR = Path(__file__).resolve().parents[2] / "alembic"

CORE_CHAIN = "core"


def _build_alembic_config(db_url: str) -> Config:
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    # ConfigParser interpolation would eat the '%' of percent-encoded credentials.
    config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    config.set_main_option("version_locations", str(ALEMBIC_DIR / "versions" / CORE_CHAIN))
    return config


async def run_migrations(db_url: str, chain: str = CORE_CHAIN) -> None:
    """Upgrade *chain* to its head revision on *db_url*.

    Alembic is synchronous, so the upgrade runs in a worker thread.
    """
    if chain != CORE_CHAIN:
        raise ValueError(f"Unknown migration chain: {chain!r}")
    config = _build_alembic_config(db_url)
    logger.info("Upgrading migration chain %s to head", chain)
    await asyncio.to_thread(command.upgrade, config, f"{chain}@head")
