# alembic/env.py
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from vmportal import models  # noqa: F401  registers the ledger tables
from vmportal.config import settings
from vmportal.db import Base

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)


def _configure(**kwargs):
    context.configure(target_metadata=Base.metadata, compare_type=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def migrate(url: str):
    """Emit SQL when invoked with --sql, otherwise apply against the live database."""
    if context.is_offline_mode():
        _configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
        return

    engine = create_engine(url, poolclass=pool.NullPool)
    with engine.connect() as connection:
        # sqlite has no ALTER CONSTRAINT
        _configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite")


migrate(settings.sqlalchemy_url)
