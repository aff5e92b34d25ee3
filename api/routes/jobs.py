"""
Job endpoints: create a job, poll its status and events
"""

from typing import Any, Dict, List, Type
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db, verify_api_key
from engine.store import RecordStore
from models.base import JobKind
from models.event import Event
from models.job import JOB_MODELS
from schemas.api import (
    CatalogDiscoveryCreate, CategoryDiscoveryCreate, EventResponse, ItemCrawlCreate,
    JobStatusResponse, MediaDiscoveryCreate, MediaProcessingCreate,
    RecordAggregationCreate, VocabularyDiscoveryCreate,
)
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["Jobs"], dependencies=[Depends(verify_api_key)])

CREATE_SCHEMAS: Dict[JobKind, Type[BaseModel]] = {
    JobKind.CATALOG_DISCOVERY: CatalogDiscoveryCreate,
    JobKind.ITEM_CRAWL: ItemCrawlCreate,
    JobKind.VOCABULARY_DISCOVERY: VocabularyDiscoveryCreate,
    JobKind.RECORD_AGGREGATION: RecordAggregationCreate,
    JobKind.MEDIA_DISCOVERY: MediaDiscoveryCreate,
    JobKind.MEDIA_PROCESSING: MediaProcessingCreate,
    JobKind.CATEGORY_DISCOVERY: CategoryDiscoveryCreate,
}


@router.post("/{kind}", response_model=JobStatusResponse, status_code=201)
async def create_job(
    kind: JobKind,
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a pending job.

    Scope problems that need the driver registry (unknown hosts, empty
    resolved scope) surface on the job's first tick, which fails it.
    """
    try:
        data = CREATE_SCHEMAS[kind].model_validate(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False, include_input=False))

    store = RecordStore(db)
    job = await store.create(JOB_MODELS[kind], **data.model_dump())
    await store.commit()

    logger.info(f"Created {kind.value} job {job.id}")
    return JobStatusResponse.from_job(job)


@router.get("/{kind}/{job_id}", response_model=JobStatusResponse)
async def get_job(kind: JobKind, job_id: int, db: AsyncSession = Depends(get_db)):
    job = await RecordStore(db).find_by_id(JOB_MODELS[kind], job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"No {kind.value} job with id {job_id}")
    return JobStatusResponse.from_job(job)


@router.get("/{kind}/{job_id}/events", response_model=List[EventResponse])
async def get_job_events(
    kind: JobKind,
    job_id: int,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    store = RecordStore(db)
    if await store.find_by_id(JOB_MODELS[kind], job_id) is None:
        raise HTTPException(status_code=404, detail=f"No {kind.value} job with id {job_id}")

    events = await store.find(
        Event,
        Event.job_kind == kind,
        Event.job_id == job_id,
        limit=limit,
        order_by=(Event.created_at, Event.id)
    )
    return [EventResponse.from_event(event) for event in events]
