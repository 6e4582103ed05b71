from sqlalchemy import create_engine, event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from app.config import DATABASE_URL, SQL_ECHO


def sync_url(url: str) -> str:
    """Map an async driver URL onto its blocking counterpart (Celery, Alembic)."""
    return (
        url.replace("postgresql+asyncpg", "postgresql+psycopg2")
        .replace("sqlite+aiosqlite", "sqlite")
    )


def enable_sqlite_foreign_keys(engine) -> None:
    # SQLite ignores ON DELETE SET NULL unless the pragma is on per connection
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Async engine for FastAPI
engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)
enable_sqlite_foreign_keys(engine.sync_engine)

# Sync engine for Celery
sync_engine = create_engine(sync_url(DATABASE_URL), echo=SQL_ECHO)
enable_sqlite_foreign_keys(sync_engine)

# Async session factory
async_session_factory = async_sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)

# Sync session factory for Celery
sync_session_factory = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=sync_engine,
    expire_on_commit=False,
)


# Declarative base class
class Base(DeclarativeBase):
    pass


# Async database initialization
async def init_db():
    # models must be registered on Base.metadata before create_all
    from app import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Dependency to get async session
async def get_db():
    async with async_session_factory() as session:
        yield session


# Dependency to get sync session for Celery
def get_db_sync():
    db = sync_session_factory()
    try:
        yield db
    finally:
        db.close()
