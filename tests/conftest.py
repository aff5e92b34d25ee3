"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool, StaticPool
from core.config import settings
from drivers.registry import DriverRegistry
from models.base import Base
from models import job, record, event, job_result  # noqa: F401
from schemas.items import DiscoveredItem, ScrapedItem
from fakes import StaticPagedDriver

# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """No politeness delays or retry backoff in tests"""
    monkeypatch.setattr(settings, "DEFAULT_DELAY_MS", 0)
    monkeypatch.setattr(settings, "RETRY_DELAY_SECONDS", 0.0)
    monkeypatch.setattr(settings, "SOURCE_PRIORITY", [])
    monkeypatch.setattr(settings, "API_KEY", None)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def file_session_maker(tmp_path):
    """SQLite file with one connection per session, for ticks that run concurrently"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ticks.db'}", echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def shop_items():
    """Three catalog entries spread over two listing pages"""
    return [
        DiscoveredItem(url="https://shop.example/p/1", natural_key="0001", name="Face Cream", price=12.5, currency="EUR"),
        DiscoveredItem(url="https://shop.example/p/2", natural_key="0002", name="Shampoo", price=4.0, currency="EUR"),
        DiscoveredItem(url="https://shop.example/p/3", natural_key="0003", name="Lip Balm"),
    ]


@pytest.fixture
def shop_details():
    return {
        "https://shop.example/p/1": ScrapedItem(natural_key="0001", name="Face Cream 50ml", brand="Acme", price=11.9, currency="EUR"),
        "https://shop.example/p/2": ScrapedItem(natural_key="0002", name="Shampoo 250ml", brand="Acme", price=4.2, currency="EUR"),
        "https://shop.example/p/3": ScrapedItem(natural_key="0003", name="Lip Balm", brand="Bee", attributes={"spf": 15}),
    }


@pytest.fixture
def shop_driver(shop_items, shop_details):
    return StaticPagedDriver(
        "shop",
        ["shop.example"],
        pages={1: shop_items[:2], 2: shop_items[2:]},
        details=shop_details,
    )


@pytest.fixture
def registry(shop_driver):
    return DriverRegistry([shop_driver])
