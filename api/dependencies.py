"""
FastAPI dependencies: database session, driver registry, coordinator and API key check
"""

import random
from typing import AsyncIterator, Optional
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from core.database import async_session_maker
from drivers.registry import DriverRegistry
from engine.coordinator import JobCoordinator
from engine.worker import Worker


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session_maker() as session:
        yield session


def get_registry(request: Request) -> DriverRegistry:
    return request.app.state.registry


def get_rng(request: Request) -> random.Random:
    rng = getattr(request.app.state, "rng", None)
    if rng is None:
        rng = random.Random()
        request.app.state.rng = rng
    return rng


def get_coordinator(
    request: Request,
    db: AsyncSession = Depends(get_db),
    registry: DriverRegistry = Depends(get_registry),
    rng: random.Random = Depends(get_rng)
) -> JobCoordinator:
    worker = Worker(registry, media_processor=getattr(request.app.state, "media_processor", None))
    return JobCoordinator(db, registry, rng=rng, worker=worker)


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Enforced only when API_KEY is configured"""
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key")
