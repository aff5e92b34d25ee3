"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import AggregationScope, CrawlScope, MediaScope, RefreshMode


# ============================================================================
# Tick Schemas
# ============================================================================

class TickSummary(BaseModel):
    """What one advance call did"""
    status: str = Field(..., description="idle, dry_run, busy, retry, failed, completed or advanced")
    message: str
    kind: Optional[str] = None
    job_id: Optional[int] = None
    job_status: Optional[str] = None
    counts: Dict[str, int] = Field(default_factory=dict)
    remaining: Optional[int] = None
    done: bool = False
    candidates: int = 0
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "status": "advanced",
                "message": "Advanced item-crawl job 12",
                "kind": "item-crawl",
                "job_id": 12,
                "job_status": "in_progress",
                "counts": {"discovered": 10, "created": 4, "existing": 6},
                "remaining": 230,
                "done": False,
                "candidates": 3
            }
        }


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    jobs: Dict[str, Dict[str, int]] = Field(default_factory=dict, description="Job counts per kind and status")
    drivers: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def determine_status(self):
        if not self.database_connected:
            self.status = "unhealthy"
        elif not self.drivers:
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self


# ============================================================================
# Job Schemas
# ============================================================================

class CatalogDiscoveryCreate(BaseModel):
    source_urls: List[str] = Field(..., min_length=1)
    pages_per_tick: Optional[int] = Field(None, ge=1)
    delay_ms: Optional[int] = Field(None, ge=0)


class CategoryDiscoveryCreate(BaseModel):
    store_urls: List[str] = Field(..., min_length=1)
    pages_per_tick: Optional[int] = Field(None, ge=1)
    delay_ms: Optional[int] = Field(None, ge=0)


class ItemCrawlCreate(BaseModel):
    scope: CrawlScope = CrawlScope.ALL
    source: str = "all"
    urls: Optional[List[str]] = None
    natural_keys: Optional[List[str]] = None
    discovery_id: Optional[int] = None
    refresh: RefreshMode = RefreshMode.UNCRAWLED_ONLY
    min_crawl_age: Optional[int] = Field(None, ge=0)
    crawl_age_unit: str = Field("days", pattern="^(hours|days)$")
    items_per_tick: Optional[int] = Field(None, ge=1)


class VocabularyDiscoveryCreate(BaseModel):
    source_url: str
    pages_per_tick: Optional[int] = Field(None, ge=1)
    delay_ms: Optional[int] = Field(None, ge=0)


class RecordAggregationCreate(BaseModel):
    scope: AggregationScope = AggregationScope.ALL
    natural_keys: Optional[List[str]] = None
    source_priority: Optional[List[str]] = None
    search_missing: bool = False
    items_per_tick: Optional[int] = Field(None, ge=1)


class MediaDiscoveryCreate(BaseModel):
    channel_url: str
    pages_per_tick: Optional[int] = Field(None, ge=1)


class MediaProcessingCreate(BaseModel):
    scope: MediaScope = MediaScope.ALL_UNPROCESSED
    media_urls: Optional[List[str]] = None
    options: Optional[Dict[str, Any]] = None
    items_per_tick: Optional[int] = Field(None, ge=1)


class JobStatusResponse(BaseModel):
    """Current state of one job"""
    id: int
    kind: str
    status: str
    discovered: int = 0
    created: int = 0
    existing: int = 0
    processed: int = 0
    errors: int = 0
    processed_this_tick: int = 0
    total: Optional[int] = None
    checkpoint: Optional[Dict[str, Any]] = None
    claimed_by: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job):
        return cls(
            id=job.id,
            kind=job.KIND.value,
            status=job.status.value,
            discovered=job.discovered or 0,
            created=job.created or 0,
            existing=job.existing or 0,
            processed=job.processed or 0,
            errors=job.errors or 0,
            processed_this_tick=job.processed_this_tick or 0,
            total=job.total,
            checkpoint=job.checkpoint,
            claimed_by=job.claimed_by,
            error_message=job.error_message,
            started_at=job.started_at,
            completed_at=job.completed_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class EventResponse(BaseModel):
    id: int
    type: str
    level: str
    message: str
    context: Optional[Dict[str, Any]] = None
    created_at: datetime

    @classmethod
    def from_event(cls, event):
        return cls(
            id=event.id,
            type=event.type.value,
            level=event.level,
            message=event.message,
            context=event.context,
            created_at=event.created_at,
        )


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Job not found",
                "detail": "No item-crawl job with id 42",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
