"""
Database engine and session factories for the job store
"""

from typing import AsyncIterator, Optional
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite URLs keep the default pool so in-memory stores survive."""
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(url, echo=echo, poolclass=NullPool)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = build_engine(echo=settings.ENVIRONMENT == "development")
async_session_maker = build_session_maker(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield a session for one request or tick"""
    async with async_session_maker() as session:
        yield session
