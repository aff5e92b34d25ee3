"""
Health check endpoint with database, job and driver status
"""

from typing import Dict
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db, get_registry
from drivers.registry import DriverRegistry
from schemas.api import HealthCheckResponse
from models.job import JOB_MODELS
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    registry: DriverRegistry = Depends(get_registry)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Job counts per kind and status
    - Registered drivers
    """

    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")

    jobs: Dict[str, Dict[str, int]] = {}

    if db_connected:
        try:
            for kind, model in JOB_MODELS.items():
                result = await db.execute(select(model.status, func.count()).group_by(model.status))
                jobs[kind.value] = {status.value: count for status, count in result.all()}
        except SQLAlchemyError as e:
            logger.error(f"Failed to count jobs: {str(e)}")

    return HealthCheckResponse(
        status="healthy",  # Replaced by the model validator
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        jobs=jobs,
        drivers=registry.slugs()
    )
