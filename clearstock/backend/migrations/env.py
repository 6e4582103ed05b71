from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

# alembic.ini puts the backend root on sys.path; app.config loads .env
from app.config import DATABASE_URL
from app.database import Base, enable_sqlite_foreign_keys, sync_url
from app import models  # noqa: F401  (tables register on Base.metadata)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Alembic drives a blocking connection: asyncpg -> psycopg2, aiosqlite -> sqlite
migration_url = sync_url(DATABASE_URL)
is_sqlite = migration_url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of touching a database."""
    context.configure(
        url=migration_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=is_sqlite,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(migration_url, poolclass=pool.NullPool)
    enable_sqlite_foreign_keys(connectable)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=is_sqlite,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
