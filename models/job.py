from sqlalchemy import Column, String, Integer, DateTime, Text, Enum, BigInteger, Boolean
from datetime import datetime
from typing import ClassVar, Dict, Type
from core.exceptions import InvalidTransitionError
from models.base import (
    Base, BigIntPK, JSONType, JobKind, JobStatus,
    CrawlScope, RefreshMode, AggregationScope, MediaScope
)


ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.IN_PROGRESS, JobStatus.FAILED},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)
ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.IN_PROGRESS)

COUNTER_FIELDS = ("discovered", "created", "existing", "processed", "errors")


class JobMixin:
    """
    Status, counter and checkpoint columns shared by every job table.

    Lifecycle:
        pending -> in_progress -> completed | failed
        pending -> failed (scope or driver problems found at initialisation)

    The checkpoint column holds whatever the job's driver last reported;
    it is stored and handed back verbatim.
    """
    KIND: ClassVar[JobKind]

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    status = Column(Enum(JobStatus, name="job_status"), default=JobStatus.PENDING, nullable=False, index=True)

    # Counters
    discovered = Column(Integer, default=0, nullable=False)
    created = Column(Integer, default=0, nullable=False)
    existing = Column(Integer, default=0, nullable=False)
    processed = Column(Integer, default=0, nullable=False)
    errors = Column(Integer, default=0, nullable=False)
    processed_this_tick = Column(Integer, default=0, nullable=False)
    total = Column(Integer, nullable=True)

    # Resume state
    checkpoint = Column(JSONType, nullable=True)

    # Claim held by the tick (or remote worker) currently advancing the job
    claimed_by = Column(String(64), nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, status: JobStatus) -> None:
        """Move to `status`, stamping started_at/completed_at; backward moves raise."""
        if status == self.status:
            return
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cannot move {self.KIND.value} job from {self.status.value} to {status.value}",
                context={"job_id": self.id, "from_status": self.status.value, "to_status": status.value}
            )
        self.status = status
        now = datetime.utcnow()
        if status == JobStatus.IN_PROGRESS and self.started_at is None:
            self.started_at = now
        if status in TERMINAL_STATUSES:
            self.completed_at = now

    def bump(self, **deltas: int) -> None:
        """Increase counters; counters never decrease."""
        for name, delta in deltas.items():
            if delta < 0:
                raise ValueError(f"Counter {name} cannot decrease (delta={delta})")
            setattr(self, name, (getattr(self, name) or 0) + delta)

    def counts(self) -> Dict[str, int]:
        return {name: getattr(self, name) or 0 for name in COUNTER_FIELDS}


class CatalogDiscoveryJob(JobMixin, Base):
    """Walks one or more catalog roots and records every item URL found"""
    __tablename__ = "catalog_discovery_jobs"
    KIND = JobKind.CATALOG_DISCOVERY

    source_urls = Column(JSONType, nullable=False, default=list)
    pages_per_tick = Column(Integer, nullable=True)
    delay_ms = Column(Integer, nullable=True)


class ItemCrawlJob(JobMixin, Base):
    """Scrapes item detail pages, either everything uncrawled or an explicit set"""
    __tablename__ = "item_crawl_jobs"
    KIND = JobKind.ITEM_CRAWL

    scope = Column(Enum(CrawlScope, name="crawl_scope"), default=CrawlScope.ALL, nullable=False)
    source = Column(String(50), nullable=False, default="all")
    urls = Column(JSONType, nullable=True)
    natural_keys = Column(JSONType, nullable=True)
    discovery_id = Column(BigInteger, nullable=True)

    refresh = Column(Enum(RefreshMode, name="refresh_mode"), default=RefreshMode.UNCRAWLED_ONLY, nullable=False)
    min_crawl_age = Column(Integer, nullable=True)
    crawl_age_unit = Column(String(10), nullable=False, default="days")

    items_per_tick = Column(Integer, nullable=True)


class VocabularyDiscoveryJob(JobMixin, Base):
    """Enumerates a term-searchable vocabulary source"""
    __tablename__ = "vocabulary_discovery_jobs"
    KIND = JobKind.VOCABULARY_DISCOVERY

    source_url = Column(String(2048), nullable=False)
    pages_per_tick = Column(Integer, nullable=True)
    delay_ms = Column(Integer, nullable=True)


class RecordAggregationJob(JobMixin, Base):
    """Merges crawled source items sharing a natural key into one record"""
    __tablename__ = "record_aggregation_jobs"
    KIND = JobKind.RECORD_AGGREGATION

    scope = Column(Enum(AggregationScope, name="aggregation_scope"), default=AggregationScope.ALL, nullable=False)
    natural_keys = Column(JSONType, nullable=True)
    source_priority = Column(JSONType, nullable=True)
    search_missing = Column(Boolean, nullable=False, default=False)
    items_per_tick = Column(Integer, nullable=True)


class MediaDiscoveryJob(JobMixin, Base):
    """Lists a channel's media entries"""
    __tablename__ = "media_discovery_jobs"
    KIND = JobKind.MEDIA_DISCOVERY

    channel_url = Column(String(2048), nullable=False)
    pages_per_tick = Column(Integer, nullable=True)


class MediaProcessingJob(JobMixin, Base):
    """Runs the external media processor over discovered media"""
    __tablename__ = "media_processing_jobs"
    KIND = JobKind.MEDIA_PROCESSING

    scope = Column(Enum(MediaScope, name="media_scope"), default=MediaScope.ALL_UNPROCESSED, nullable=False)
    media_urls = Column(JSONType, nullable=True)
    options = Column(JSONType, nullable=True)
    items_per_tick = Column(Integer, nullable=True)
    tokens_used = Column(Integer, nullable=False, default=0)


class CategoryDiscoveryJob(JobMixin, Base):
    """Walks store category trees and records the category hierarchy"""
    __tablename__ = "category_discovery_jobs"
    KIND = JobKind.CATEGORY_DISCOVERY

    store_urls = Column(JSONType, nullable=False, default=list)
    pages_per_tick = Column(Integer, nullable=True)
    delay_ms = Column(Integer, nullable=True)


JOB_MODELS: Dict[JobKind, Type[JobMixin]] = {
    model.KIND: model
    for model in (
        CatalogDiscoveryJob,
        ItemCrawlJob,
        VocabularyDiscoveryJob,
        RecordAggregationJob,
        MediaDiscoveryJob,
        MediaProcessingJob,
        CategoryDiscoveryJob,
    )
}
