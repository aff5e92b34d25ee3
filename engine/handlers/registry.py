from typing import Dict
from drivers.registry import DriverRegistry
from engine.handlers.aggregation import RecordAggregationHandler
from engine.handlers.base import JobHandler
from engine.handlers.discovery import (
    CatalogDiscoveryHandler, CategoryDiscoveryHandler,
    MediaDiscoveryHandler, VocabularyDiscoveryHandler,
)
from engine.handlers.item_crawl import ItemCrawlHandler
from engine.handlers.media_processing import MediaProcessingHandler
from engine.store import RecordStore
from engine.upsert import UpsertEngine
from models.base import JobKind

HANDLER_CLASSES = (
    CatalogDiscoveryHandler,
    ItemCrawlHandler,
    VocabularyDiscoveryHandler,
    RecordAggregationHandler,
    MediaDiscoveryHandler,
    MediaProcessingHandler,
    CategoryDiscoveryHandler,
)


def build_handlers(store: RecordStore, registry: DriverRegistry) -> Dict[JobKind, JobHandler]:
    """One handler per job kind, sharing a store and upsert engine"""
    upsert = UpsertEngine(store)
    return {cls.kind: cls(store, registry, upsert) for cls in HANDLER_CLASSES}
