"""Alembic environment for the teamcal schema.

Migrations are raw SQL (``op.execute``); there is no SQLAlchemy metadata.
When invoked through the Alembic CLI without ``sqlalchemy.url``, the target
database is taken from ``teamcal.toml`` / ``DATABASE_URL`` / ``POSTGRES_*``.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, pool

from alembic import context
from teamcal.config import load_config

CORE_VERSIONS = Path(__file__).parent / "versions" / "core"


def _database_url() -> str:
    configured = context.config.get_main_option("sqlalchemy.url")
    return configured or load_config().database.build().url


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=None, version_locations=[str(CORE_VERSIONS)], **kwargs
    )


if context.is_offline_mode():
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = create_engine(_database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()
