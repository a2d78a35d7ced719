from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import make_url

from rewards_api.core.settings import settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Migrations run on the sync drivers matching the service's async ones.
SYNC_DRIVERS = {
    "postgresql+asyncpg": "postgresql+psycopg2",
    "sqlite+aiosqlite": "sqlite",
}


def get_metadata():
    from rewards_api.db.base import Base  # noqa: WPS433 (late import)

    return Base.metadata


def sync_database_url() -> str:
    url = make_url(settings.database_url)
    driver = SYNC_DRIVERS.get(url.drivername)
    if driver is None:
        return url.render_as_string(hide_password=False)
    return url.set(drivername=driver).render_as_string(hide_password=False)


def run_migrations_offline():
    """Run migrations in 'offline' mode."""
    context.configure(url=sync_database_url(), target_metadata=get_metadata(), literal_binds=True)

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    """Run migrations in 'online' mode."""
    connectable = create_engine(sync_database_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=get_metadata())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
