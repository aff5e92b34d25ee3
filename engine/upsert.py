"""
Idempotent create-or-merge persistence for everything drivers deliver.

Each record type has a canonical identity within its source:

    SourceItem       normalised URL, falling back to the natural key
    VocabularyEntry  lower-cased name
    Category         normalised URL
    MediaItem        external id
    AggregatedRecord natural key

Applying the same input twice leaves the record in the same state; only
the `created` flag of the outcome differs between the two calls. Merges
only overwrite attributes with non-null values, identity columns are never
rewritten, and price history is only ever appended to.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence
from sqlalchemy import select
from core.exceptions import UpsertError
from engine.store import RecordStore
from engine.urls import normalize_url
from models.base import JobKind, MediaStatus, RecordStatus
from models.job_result import JobResult
from models.record import AggregatedRecord, Category, MediaItem, SourceItem, VocabularyEntry
from schemas.items import (
    AggregatedData, DiscoveredCategory, DiscoveredItem, DiscoveredMedia,
    DiscoveredVocabularyEntry, PriceEntry, ScrapedItem,
)
import logging

logger = logging.getLogger(__name__)

PATH_SEPARATOR = " > "

RESETTABLE_STATUSES = (RecordStatus.CRAWLED, RecordStatus.FAILED)


@dataclass
class UpsertOutcome:
    record: Any
    created: bool


def canonical_url(url: str, source: Optional[str] = None) -> str:
    try:
        return normalize_url(url)
    except ValueError as e:
        raise UpsertError(
            "Item has no usable URL",
            context={"source": source, "url": url},
            original_exception=e
        )


def path_key(path: Sequence[str]) -> str:
    return PATH_SEPARATOR.join(p.strip() for p in path)


def _non_null(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _union(existing: Optional[List[str]], new: Iterable[str]) -> List[str]:
    merged = list(existing or [])
    for value in new:
        if value not in merged:
            merged.append(value)
    return merged


class UpsertEngine:
    def __init__(self, store: RecordStore):
        self.store = store

    # ------------------------------------------------------------------
    # Source items
    # ------------------------------------------------------------------

    async def find_source_item(self, source: str, url: Optional[str], natural_key: Optional[str] = None) -> Optional[SourceItem]:
        """URL match within the source first, then natural key within the source."""
        if url:
            record = await self.store.find_one(
                SourceItem, SourceItem.source == source, SourceItem.source_url == url
            )
            if record is not None:
                return record
        if natural_key:
            return await self.store.find_one(
                SourceItem, SourceItem.source == source, SourceItem.natural_key == natural_key
            )
        return None

    async def upsert_discovered_item(self, source: str, item: DiscoveredItem) -> UpsertOutcome:
        url = canonical_url(item.url, source)
        attributes = _non_null({
            "name": item.name,
            "brand": item.brand,
            "category": item.category,
            "category_url": item.category_url,
            "rating": item.rating,
            "rating_count": item.rating_count,
        })
        price = None
        if item.price is not None:
            price = PriceEntry(amount=item.price, currency=item.currency)

        record = await self.find_source_item(source, url, item.natural_key)
        if record is None:
            record = await self.store.create(
                SourceItem,
                source=source,
                source_url=url,
                natural_key=item.natural_key,
                status=RecordStatus.UNCRAWLED,
                price_history=[price.model_dump(mode="json")] if price else [],
                **attributes
            )
            return UpsertOutcome(record=record, created=True)

        await self._merge_source_item(record, item.natural_key, attributes, price)
        return UpsertOutcome(record=record, created=False)

    async def upsert_scraped_item(self, source: str, url: str, data: ScrapedItem) -> UpsertOutcome:
        """Apply full detail for one crawled item and mark it crawled."""
        source_url = canonical_url(url, source)
        attributes = _non_null({
            "name": data.name,
            "brand": data.brand,
            "description": data.description,
            "category": data.category,
            "category_url": data.category_url,
            "rating": data.rating,
            "rating_count": data.rating_count,
        })
        if data.images:
            attributes["images"] = list(data.images)

        price = None
        if data.price is not None:
            price = PriceEntry(
                amount=data.price,
                currency=data.currency,
                per_unit_amount=data.per_unit_amount,
                per_unit_quantity=data.per_unit_quantity,
                per_unit_unit=data.per_unit_unit,
            )

        now = datetime.utcnow()
        record = await self.find_source_item(source, source_url, data.natural_key)
        if record is None:
            record = await self.store.create(
                SourceItem,
                source=source,
                source_url=source_url,
                natural_key=data.natural_key,
                status=RecordStatus.CRAWLED,
                attributes=dict(data.attributes) or None,
                price_history=[price.model_dump(mode="json")] if price else [],
                crawled_at=now,
                **attributes
            )
            return UpsertOutcome(record=record, created=True)

        if data.attributes:
            attributes["attributes"] = {**(record.attributes or {}), **data.attributes}
        attributes.update(status=RecordStatus.CRAWLED, crawled_at=now, last_error=None)
        await self._merge_source_item(record, data.natural_key, attributes, price)
        return UpsertOutcome(record=record, created=False)

    async def mark_failed(self, source: str, url: str, error: str) -> Optional[UpsertOutcome]:
        """Record a crawl failure on an existing item; unknown URLs are left alone."""
        record = await self.find_source_item(source, canonical_url(url, source))
        if record is None:
            return None
        await self.store.update(
            record,
            status=RecordStatus.FAILED,
            last_error=error,
            crawled_at=datetime.utcnow()
        )
        return UpsertOutcome(record=record, created=False)

    async def _merge_source_item(
        self,
        record: SourceItem,
        natural_key: Optional[str],
        attributes: Dict[str, Any],
        price: Optional[PriceEntry]
    ) -> None:
        if natural_key and not record.natural_key:
            attributes["natural_key"] = natural_key
        if price is not None:
            # Reassign so the JSON column is flagged dirty
            attributes["price_history"] = list(record.price_history or []) + [price.model_dump(mode="json")]
        await self.store.update(record, **attributes)

    # ------------------------------------------------------------------
    # Re-crawl resets and outstanding work
    # ------------------------------------------------------------------

    async def reset_items(
        self,
        source: str,
        urls: Optional[Sequence[str]] = None,
        crawled_before: Optional[datetime] = None
    ) -> int:
        """
        Flip crawled/failed items of one source back to uncrawled.

        Scoped by URL list and/or crawl age. Items of other sources are
        never touched.
        """
        if not source:
            raise ValueError("reset_items requires a source")

        where = [SourceItem.source == source, SourceItem.status.in_(RESETTABLE_STATUSES)]
        if urls is not None:
            where.append(SourceItem.source_url.in_([canonical_url(u, source) for u in urls]))
        if crawled_before is not None:
            where.append(SourceItem.crawled_at < crawled_before)

        reset = await self.store.update_where(
            SourceItem, *where,
            status=RecordStatus.UNCRAWLED,
            last_error=None
        )
        logger.info(f"Reset {reset} items of {source} to uncrawled")
        return reset

    def _outstanding_filter(self, sources: Sequence[str], job_kind: JobKind, job_id: int) -> List[Any]:
        applied = select(JobResult.record_key).where(
            JobResult.job_kind == job_kind,
            JobResult.job_id == job_id
        )
        return [
            SourceItem.source.in_(list(sources)),
            SourceItem.status == RecordStatus.UNCRAWLED,
            SourceItem.source_url.not_in(applied),
        ]

    async def count_outstanding(self, sources: Sequence[str], job_kind: JobKind, job_id: int) -> int:
        """Uncrawled items of `sources` the job has not applied yet."""
        return await self.store.count(SourceItem, *self._outstanding_filter(sources, job_kind, job_id))

    async def find_outstanding(
        self,
        sources: Sequence[str],
        job_kind: JobKind,
        job_id: int,
        limit: Optional[int] = None
    ) -> List[SourceItem]:
        return await self.store.find(
            SourceItem,
            *self._outstanding_filter(sources, job_kind, job_id),
            limit=limit,
            order_by=(SourceItem.id,)
        )

    # ------------------------------------------------------------------
    # Vocabulary, categories, media, aggregates
    # ------------------------------------------------------------------

    async def upsert_vocabulary_entry(self, source: str, entry: DiscoveredVocabularyEntry) -> UpsertOutcome:
        name_key = entry.name.strip().lower()
        if not name_key:
            raise UpsertError("Vocabulary entry has an empty name", context={"source": source})

        attributes = _non_null({
            "external_id": entry.external_id,
            "cas_number": entry.cas_number,
            "ec_number": entry.ec_number,
            "description": entry.description,
            "restrictions": entry.restrictions,
            "source_url": entry.source_url,
        })

        record = await self.store.find_one(
            VocabularyEntry, VocabularyEntry.source == source, VocabularyEntry.name_key == name_key
        )
        if record is None:
            record = await self.store.create(
                VocabularyEntry,
                source=source,
                name=entry.name.strip(),
                name_key=name_key,
                functions=_union([], entry.functions),
                **attributes
            )
            return UpsertOutcome(record=record, created=True)

        if entry.functions:
            attributes["functions"] = _union(record.functions, entry.functions)
        await self.store.update(record, **attributes)
        return UpsertOutcome(record=record, created=False)

    async def upsert_category(self, source: str, category: DiscoveredCategory) -> UpsertOutcome:
        url = canonical_url(category.url, source)
        key = path_key(category.path) if category.path else None

        parent_id = None
        if len(category.path) > 1:
            parent = await self.store.find_one(
                Category, Category.source == source, Category.path_key == path_key(category.path[:-1])
            )
            parent_id = parent.id if parent else None

        attributes = _non_null({
            "name": category.name,
            "path": list(category.path) if category.path else None,
            "path_key": key,
            "parent_id": parent_id,
        })

        record = await self.store.find_one(Category, Category.source == source, Category.url == url)
        if record is None:
            record = await self.store.create(Category, source=source, url=url, **attributes)
            return UpsertOutcome(record=record, created=True)

        await self.store.update(record, **attributes)
        return UpsertOutcome(record=record, created=False)

    async def upsert_media_item(self, source: str, media: DiscoveredMedia) -> UpsertOutcome:
        attributes = _non_null({
            "url": media.url,
            "title": media.title,
            "description": media.description,
            "thumbnail_url": media.thumbnail_url,
            "channel_name": media.channel_name,
            "channel_url": media.channel_url,
            "published_at": media.published_at,
            "duration": media.duration,
            "view_count": media.view_count,
        })

        record = await self.store.find_one(
            MediaItem, MediaItem.source == source, MediaItem.external_id == media.external_id
        )
        if record is None:
            record = await self.store.create(
                MediaItem,
                source=source,
                external_id=media.external_id,
                processing_status=MediaStatus.UNPROCESSED,
                **attributes
            )
            return UpsertOutcome(record=record, created=True)

        await self.store.update(record, **attributes)
        return UpsertOutcome(record=record, created=False)

    async def apply_media_result(
        self,
        media: MediaItem,
        segments: Optional[List[Dict[str, Any]]] = None,
        error: Optional[str] = None
    ) -> UpsertOutcome:
        if error:
            await self.store.update(media, processing_status=MediaStatus.FAILED, last_error=error)
        else:
            await self.store.update(
                media,
                processing_status=MediaStatus.PROCESSED,
                segments=list(segments or []),
                processed_at=datetime.utcnow(),
                last_error=None
            )
        return UpsertOutcome(record=media, created=False)

    async def upsert_aggregate(self, data: AggregatedData) -> UpsertOutcome:
        attributes = _non_null({
            "name": data.name,
            "brand": data.brand,
            "description": data.description,
            "category": data.category,
            "lowest_price": data.lowest_price,
            "currency": data.currency,
        })
        attributes.update(
            attributes=dict(data.attributes),
            sources=list(data.sources),
            source_item_ids=list(data.source_item_ids),
            aggregated_at=datetime.utcnow(),
        )

        record = await self.store.find_one(AggregatedRecord, AggregatedRecord.natural_key == data.natural_key)
        if record is None:
            record = await self.store.create(AggregatedRecord, natural_key=data.natural_key, **attributes)
            return UpsertOutcome(record=record, created=True)

        await self.store.update(record, **attributes)
        return UpsertOutcome(record=record, created=False)
