"""
Record aggregation handler.

scope=all walks crawled items that carry a natural key, by id, keeping the
last id checked as the job's checkpoint. scope=selected_keys works through
an explicit key list, tracked by the ledger. With search_missing, the work
unit names the searchable sources that have no item for a key yet, and the
worker's search hits are stored before the key is merged.
"""

from typing import Any, Dict, List, Optional, Tuple
from core.config import settings
from core.exceptions import MalformedScopeError
from engine.aggregation import SourceSnapshot, aggregate_sources, latest_price
from engine.budget import ItemBudget
from engine.handlers.base import AppliedItem, JobHandler
from models.base import AggregationScope, JobKind, RecordStatus
from models.job import RecordAggregationJob
from models.record import SourceItem
from schemas.work import AggregationCursor, AggregationTarget, RecordAggregationWork
import logging

logger = logging.getLogger(__name__)


def snapshot_of(item: SourceItem) -> SourceSnapshot:
    price = latest_price(item.price_history)
    return SourceSnapshot(
        source=item.source,
        source_item_id=item.id,
        name=item.name,
        brand=item.brand,
        description=item.description,
        category=item.category,
        attributes=dict(item.attributes or {}),
        price=price.get("amount") if price else None,
        currency=price.get("currency") if price else None,
    )


class RecordAggregationHandler(JobHandler):
    kind = JobKind.RECORD_AGGREGATION
    model = RecordAggregationJob

    def is_priority(self, job: RecordAggregationJob) -> bool:
        return job.scope == AggregationScope.SELECTED_KEYS

    def cursor(self, job: RecordAggregationJob) -> AggregationCursor:
        return AggregationCursor.model_validate(job.checkpoint) if job.checkpoint else AggregationCursor()

    def _crawled_with_key(self, after_id: int) -> List[Any]:
        return [
            SourceItem.status == RecordStatus.CRAWLED,
            SourceItem.natural_key.is_not(None),
            SourceItem.id > after_id,
        ]

    async def initialise(self, job: RecordAggregationJob) -> None:
        if job.scope == AggregationScope.SELECTED_KEYS:
            if not [k for k in (job.natural_keys or []) if k]:
                raise MalformedScopeError("selected_keys aggregation has no natural keys", context={"job_id": job.id})
        job.total = await self.remaining(job)

    async def remaining(self, job: RecordAggregationJob) -> int:
        if job.scope == AggregationScope.SELECTED_KEYS:
            keys = list(dict.fromkeys(k for k in job.natural_keys or [] if k))
            applied = await self.applied_keys(job.id, keys)
            return len([k for k in keys if k not in applied])
        return await self.store.count(SourceItem, *self._crawled_with_key(self.cursor(job).last_checked_id))

    async def next_keys(self, job: RecordAggregationJob, budget: ItemBudget) -> Tuple[List[str], Optional[AggregationCursor]]:
        if job.scope == AggregationScope.SELECTED_KEYS:
            keys = list(dict.fromkeys(k for k in job.natural_keys or [] if k))
            applied = await self.applied_keys(job.id, keys)
            return budget.take([k for k in keys if k not in applied]), None

        cursor = self.cursor(job)
        items = await self.store.find(
            SourceItem, *self._crawled_with_key(cursor.last_checked_id),
            limit=budget.max_items, order_by=(SourceItem.id,)
        )
        if not items:
            return [], cursor
        applied = await self.applied_keys(job.id, [i.natural_key for i in items])
        keys = list(dict.fromkeys(i.natural_key for i in items if i.natural_key not in applied))
        return keys, AggregationCursor(last_checked_id=items[-1].id)

    async def make_work(self, job: RecordAggregationJob) -> Optional[RecordAggregationWork]:
        keys, cursor = await self.next_keys(job, self.item_budget(job))
        if not keys and (cursor is None or cursor.last_checked_id == self.cursor(job).last_checked_id):
            return None

        searchable = [d.slug for d in self.registry.searchable()] if job.search_missing else []
        targets = []
        for key in keys:
            items = await self.store.find(SourceItem, SourceItem.natural_key == key, order_by=(SourceItem.id,))
            present = {item.source for item in items}
            targets.append(AggregationTarget(
                natural_key=key,
                name=next((item.name for item in items if item.name), None),
                missing_sources=[slug for slug in searchable if slug not in present],
            ))
        return RecordAggregationWork(job_id=job.id, targets=targets, cursor=cursor)

    def persist_for(self, job: RecordAggregationJob):
        priority = list(job.source_priority or settings.SOURCE_PRIORITY)

        async def persist(result: Any) -> AppliedItem:
            for match in result.matches:
                if match.natural_key == result.natural_key and match.source:
                    await self.upsert.upsert_discovered_item(match.source, match)

            items = await self.store.find(
                SourceItem, SourceItem.natural_key == result.natural_key, order_by=(SourceItem.id,)
            )
            if not items:
                return AppliedItem(
                    record_id=None,
                    outcome="error",
                    error=f"No source items for natural key {result.natural_key}"
                )

            merged = aggregate_sources(result.natural_key, [snapshot_of(i) for i in items], priority)
            outcome = await self.upsert.upsert_aggregate(merged)
            return self.applied(outcome, processed=1)

        return persist

    async def apply_submission(self, job: RecordAggregationJob, submission: Any, counts: Dict[str, int]) -> None:
        events = self.events(job.id)
        for result in submission.results:
            for error in result.search_errors:
                await events.warning(f"Search for {result.natural_key} failed: {error}", natural_key=result.natural_key)
        if any(result.search_errors for result in submission.results):
            await self.store.commit()

        keyed = [(result.natural_key, result) for result in submission.results]
        await self.apply_results(job, keyed, self.persist_for(job), counts)

        if submission.checkpoint is not None:
            job.checkpoint = submission.checkpoint.model_dump(mode="json")

    async def evaluate(self, job: RecordAggregationJob, submission: Any) -> Tuple[bool, Optional[int]]:
        remaining = await self.remaining(job)
        return remaining == 0, remaining
