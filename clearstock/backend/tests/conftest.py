import os

# app.config refuses to import without a database URL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCAN_CACHE_BACKEND", "memory")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import app.main as main_module
from app.main import app
from app.celery_app import celery_app
from app.database import Base, get_db, enable_sqlite_foreign_keys
from app.models import Restaurant
from app.scanner import ExpiryScanner, InMemoryScanCache, get_scanner

# --- in-memory SQLite, one connection shared by every session of a test ---
SQLALCHEMY_TEST_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    test_engine = create_async_engine(
        SQLALCHEMY_TEST_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(test_engine.sync_engine)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def restaurant(db_session):
    kitchen = Restaurant(name="Test Kitchen", alert_days_before_expiry=3)
    db_session.add(kitchen)
    await db_session.commit()
    return kitchen


@pytest_asyncio.fixture
async def other_restaurant(db_session):
    kitchen = Restaurant(name="Other Kitchen", alert_days_before_expiry=3)
    db_session.add(kitchen)
    await db_session.commit()
    return kitchen


class DummyTask:
    def __init__(self, id):
        self.id = id


class DummyResult:
    def __init__(self, result, ready=True, failed=False):
        self._result = result
        self._ready = ready
        self._failed = failed
        self.state = "SUCCESS" if ready and not failed else ("FAILURE" if failed else "PENDING")

    def ready(self):
        return self._ready

    def failed(self):
        return self._failed

    def get(self, propagate=True):
        return self._result


class CeleryStub:
    """Records sent tasks and serves canned results per task id."""

    def __init__(self):
        self.sent = []
        self.results = {}

    def send_task(self, name, args=None, kwargs=None, **options):
        self.sent.append((name, list(args or []), kwargs or {}))
        return DummyTask(id=f"task-{len(self.sent)}")

    def async_result(self, task_id):
        return self.results.get(task_id, DummyResult(None, ready=False))

    def finish(self, task_id, result, failed=False):
        self.results[task_id] = DummyResult(result, failed=failed)


@pytest.fixture
def celery_stub(monkeypatch):
    stub = CeleryStub()
    monkeypatch.setattr(celery_app, "send_task", stub.send_task)
    monkeypatch.setattr(celery_app, "AsyncResult", stub.async_result)
    return stub


@pytest.fixture
def scanner():
    return ExpiryScanner(InMemoryScanCache(ttl=60))


@pytest_asyncio.fixture
async def client(session_factory, restaurant, scanner, celery_stub, monkeypatch):
    # ASGITransport skips the lifespan, but keep init_db away from the real engine anyway
    async def _noop_init_db():
        return
    monkeypatch.setattr(main_module, "init_db", _noop_init_db)

    # a fresh session per request, like production
    async def _get_db():
        async with session_factory() as session:
            yield session
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_scanner] = lambda: scanner

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Restaurant-Id": str(restaurant.id)},
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
