import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="scheduling-tests-")

# configuration is read at import time, so it has to be in place before the app is imported
os.environ["SCHEDULING_DB"] = f"sqlite+aiosqlite:///{_DB_DIR}/scheduling.db"
os.environ["NOTIFICATION_SERVICE_URL"] = "http://notifications.test"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["GARAGE_TIMEZONE"] = "Europe/London"
for _var in ("REDIS_URL", "RABBIT_URL", "SQL_ECHO"):
    os.environ.pop(_var, None)

import httpx  # noqa: E402
import pytest  # noqa: E402

from app import models  # noqa: E402,F401
from app import redis_client  # noqa: E402
from app.db import Base, SessionLocal, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.routes import get_calendar, get_notifier  # noqa: E402
from app.schedule_store import create_garage  # noqa: E402

from helpers import FakeNotifier, FakeRedis, StaticHolidayCalendar  # noqa: E402


@pytest.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
async def db():
    async with SessionLocal() as session:
        yield session


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_client, "_client", fake)
    return fake


@pytest.fixture
def calendar():
    return StaticHolidayCalendar()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def make_garage():
    async def _make(**kwargs):
        kwargs.setdefault("name", "Kwik MOT Centre")
        async with SessionLocal() as session:
            return await create_garage(session, **kwargs)

    return _make


@pytest.fixture
async def garage(make_garage):
    return await make_garage()


@pytest.fixture
async def client(calendar, notifier):
    app.dependency_overrides[get_calendar] = lambda: calendar
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
