"""
Media processing handler: hands discovered media to the external processor
and stores the segments it returns.
"""

from typing import Any, Dict, List, Optional, Tuple
from core.exceptions import MalformedScopeError
from engine.budget import ItemBudget
from engine.handlers.base import AppliedItem, JobHandler
from models.base import JobKind, MediaScope, MediaStatus
from models.job import MediaProcessingJob
from models.job_result import JobResult
from models.record import MediaItem
from schemas.work import MediaProcessingWork
from sqlalchemy import select
import logging

logger = logging.getLogger(__name__)


class MediaProcessingHandler(JobHandler):
    kind = JobKind.MEDIA_PROCESSING
    model = MediaProcessingJob

    def is_priority(self, job: MediaProcessingJob) -> bool:
        return job.scope in (MediaScope.SINGLE, MediaScope.SELECTED_URLS)

    def scoped_urls(self, job: MediaProcessingJob) -> List[str]:
        urls = list(dict.fromkeys(u.strip() for u in job.media_urls or [] if u and u.strip()))
        if job.scope == MediaScope.SINGLE:
            return urls[:1]
        return urls

    async def initialise(self, job: MediaProcessingJob) -> None:
        if job.scope != MediaScope.ALL_UNPROCESSED:
            urls = self.scoped_urls(job)
            if not urls:
                raise MalformedScopeError(f"{job.scope.value} media job has no URLs", context={"job_id": job.id})
            known = await self.store.count(MediaItem, MediaItem.url.in_(urls))
            if known == 0:
                raise MalformedScopeError(
                    "None of the requested media URLs have been discovered",
                    context={"job_id": job.id, "urls": urls}
                )
        job.total = await self.remaining(job)

    def _unprocessed(self, job_id: int) -> List[Any]:
        applied = select(JobResult.record_key).where(
            JobResult.job_kind == self.kind,
            JobResult.job_id == job_id
        )
        return [
            MediaItem.processing_status == MediaStatus.UNPROCESSED,
            MediaItem.url.not_in(applied),
        ]

    async def targets(self, job: MediaProcessingJob, budget: ItemBudget) -> List[str]:
        if job.scope == MediaScope.ALL_UNPROCESSED:
            items = await self.store.find(
                MediaItem, *self._unprocessed(job.id), limit=budget.max_items, order_by=(MediaItem.id,)
            )
            return [item.url for item in items]

        applied = await self.applied_keys(job.id)
        return budget.take([u for u in self.scoped_urls(job) if u not in applied])

    async def remaining(self, job: MediaProcessingJob) -> int:
        if job.scope == MediaScope.ALL_UNPROCESSED:
            return await self.store.count(MediaItem, *self._unprocessed(job.id))
        return len(await self.targets(job, ItemBudget()))

    async def make_work(self, job: MediaProcessingJob) -> Optional[MediaProcessingWork]:
        urls = await self.targets(job, self.item_budget(job))
        if not urls:
            return None
        return MediaProcessingWork(job_id=job.id, urls=urls, options=dict(job.options or {}))

    async def persist(self, result: Any) -> AppliedItem:
        media = await self.store.find_one(MediaItem, MediaItem.url == result.url)
        if media is None:
            return AppliedItem(record_id=None, outcome="error", error=f"Unknown media {result.url}")

        deltas = {"tokens_used": result.tokens_used} if result.tokens_used else {}
        if result.error:
            await self.upsert.apply_media_result(media, error=result.error)
            return AppliedItem(record_id=media.id, outcome="error", error=result.error, deltas=deltas)

        await self.upsert.apply_media_result(media, segments=result.segments)
        return AppliedItem(record_id=media.id, outcome="existing", deltas={"processed": 1, **deltas})

    async def apply_submission(self, job: MediaProcessingJob, submission: Any, counts: Dict[str, int]) -> None:
        keyed = [(result.url, result) for result in submission.results]
        await self.apply_results(job, keyed, self.persist, counts)

    async def evaluate(self, job: MediaProcessingJob, submission: Any) -> Tuple[bool, Optional[int]]:
        remaining = await self.remaining(job)
        return remaining == 0, remaining
