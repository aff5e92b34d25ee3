"""
SQLAlchemy ORM models for database tables.

Models:
    base: Declarative base, column type variants and shared enums
    job: Job tables (one per job kind) sharing JobMixin's status/counter/checkpoint shape
    record: Durable records (source items, vocabulary entries, categories, media, aggregates)
    event: Append-only job events
    job_result: Per-job ledger of applied items

Usage:
    from models.job import ItemCrawlJob, JOB_MODELS
    from models.record import SourceItem
    from models.base import JobKind, JobStatus

Example:
    job = ItemCrawlJob(scope=CrawlScope.SELECTED_URLS, urls=["https://shop.example/p/1"])
    session.add(job)
    await session.commit()
"""

__all__ = [
    "Base",
    "JobKind",
    "JobStatus",
    "EventType",
    "RecordStatus",
    "MediaStatus",
    "JobMixin",
    "JOB_MODELS",
    "CatalogDiscoveryJob",
    "ItemCrawlJob",
    "VocabularyDiscoveryJob",
    "RecordAggregationJob",
    "MediaDiscoveryJob",
    "MediaProcessingJob",
    "CategoryDiscoveryJob",
    "SourceItem",
    "VocabularyEntry",
    "Category",
    "MediaItem",
    "AggregatedRecord",
    "Event",
    "JobResult",
]
