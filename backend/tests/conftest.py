"""
Test configuration and fixtures.

Every test gets its own in-memory SQLite database. The environment is set
before the app is imported so the module-level settings never point at
real services.
"""
import os
import tempfile

os.environ["DATA_PATH"] = tempfile.mkdtemp(prefix="pdpwatch-test-")
os.environ["GEMINI_API_KEY"] = ""
os.environ["SCAN_ENGINE_URL"] = ""
os.environ["SMTP_HOST"] = ""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base, configure_sqlite
from tests.factories import NOW, create_page, create_scan, create_shop
from tests.fakes import FakeAnalyzer, FakeNotifier, FakeScanEngine


@pytest_asyncio.fixture
async def engine():
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    configure_sqlite(test_engine)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture
def clock():
    return lambda: NOW


@pytest_asyncio.fixture
async def shop(session):
    return await create_shop(session)


@pytest_asyncio.fixture
async def page(session, shop):
    return await create_page(session, shop)


@pytest_asyncio.fixture
async def scan(session, page):
    return await create_scan(session, page)


@pytest.fixture
def fake_engine():
    return FakeScanEngine()


@pytest.fixture
def fake_analyzer():
    return FakeAnalyzer(available=False)


@pytest.fixture
def fake_notifier():
    return FakeNotifier()
