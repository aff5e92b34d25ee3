"""
Handlers for the traversal kinds: catalog, category, vocabulary and media
discovery.

All four walk one or more root URLs with a driver, carry a SliceCursor as
their checkpoint, and complete when the worker reports the traversal done.
"""

from abc import abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from core.exceptions import MalformedScopeError, UpsertError
from drivers.base import DiscoveryMode
from engine.handlers.base import AppliedItem, JobHandler
from engine.upsert import canonical_url
from engine.urls import normalize_url
from models.base import JobKind
from models.job import CatalogDiscoveryJob, CategoryDiscoveryJob, JobMixin, MediaDiscoveryJob, VocabularyDiscoveryJob
from schemas.work import (
    CatalogDiscoveryWork, CategoryDiscoveryWork, MediaDiscoveryWork,
    SliceCursor, VocabularyDiscoveryWork,
)
import logging

logger = logging.getLogger(__name__)


class DiscoveryHandler(JobHandler):
    work_model: Any
    mode: DiscoveryMode = DiscoveryMode.ITEMS

    @abstractmethod
    def root_urls(self, job: JobMixin) -> List[str]:
        """The URLs the job walks, in order."""

    @abstractmethod
    def result_key(self, result: Any) -> str:
        """Ledger key identifying one result within the job."""

    @abstractmethod
    async def persist(self, source: str, result: Any) -> AppliedItem:
        """Upsert one result."""

    async def initialise(self, job: JobMixin) -> None:
        urls = [u for u in (self.root_urls(job) or []) if u and u.strip()]
        if not urls:
            raise MalformedScopeError(
                f"{self.kind.value} job {job.id} has no URLs to walk",
                context={"job_id": job.id}
            )
        for url in urls:
            try:
                normalize_url(url)
            except ValueError as e:
                raise MalformedScopeError(
                    f"Invalid URL in scope: {url!r}",
                    context={"job_id": job.id, "url": url},
                    original_exception=e
                )
            self.registry.require(url)

    async def make_work(self, job: JobMixin) -> Optional[Any]:
        urls = self.root_urls(job)
        cursor = SliceCursor.model_validate(job.checkpoint) if job.checkpoint else SliceCursor()
        if cursor.url_index >= len(urls):
            return None
        return self.work_model(
            job_id=job.id,
            urls=urls,
            cursor=cursor,
            pages_per_tick=self.pages_per_tick(job),
            delay_ms=self.delay_ms(job)
        )

    def source_for(self, job: JobMixin, result: Any) -> str:
        """Slug the result belongs to: its own tag, its URL, or the job's first root."""
        source = getattr(result, "source", None)
        if source:
            return source
        url = getattr(result, "url", None)
        if url:
            slug = self.registry.source_slug_for(url)
            if slug:
                return slug
        return self.registry.require(self.root_urls(job)[0]).slug

    async def apply_submission(self, job: JobMixin, submission: Any, counts: Dict[str, int]) -> None:
        job_id = job.id
        events = self.events(job_id)

        for page_error in submission.page_errors:
            await events.warning(
                f"Skipped page {page_error.page_index} of {page_error.url}: {page_error.error}",
                url=page_error.url,
                page_index=page_error.page_index
            )
        if submission.page_errors:
            await self.store.commit()

        async def persist(result: Any) -> AppliedItem:
            return await self.persist(self.source_for(job, result), result)

        keyed = [(self.safe_key(result), result) for result in submission.results]
        await self.apply_results(job, keyed, persist, counts)

    def safe_key(self, result: Any) -> str:
        # Unkeyable results still go through persist so they fail as items
        try:
            return self.result_key(result)
        except UpsertError:
            return str(getattr(result, "url", "") or "")

    async def evaluate(self, job: JobMixin, submission: Any) -> Tuple[bool, Optional[int]]:
        return submission.done, None


class CatalogDiscoveryHandler(DiscoveryHandler):
    kind = JobKind.CATALOG_DISCOVERY
    model = CatalogDiscoveryJob
    work_model = CatalogDiscoveryWork

    def root_urls(self, job: CatalogDiscoveryJob) -> List[str]:
        return list(job.source_urls or [])

    def result_key(self, result: Any) -> str:
        return canonical_url(result.url)

    async def persist(self, source: str, result: Any) -> AppliedItem:
        outcome = await self.upsert.upsert_discovered_item(source, result)
        return self.applied(outcome, discovered=1)


class CategoryDiscoveryHandler(DiscoveryHandler):
    kind = JobKind.CATEGORY_DISCOVERY
    model = CategoryDiscoveryJob
    work_model = CategoryDiscoveryWork
    mode = DiscoveryMode.CATEGORIES

    def root_urls(self, job: CategoryDiscoveryJob) -> List[str]:
        return list(job.store_urls or [])

    def result_key(self, result: Any) -> str:
        return canonical_url(result.url)

    async def persist(self, source: str, result: Any) -> AppliedItem:
        outcome = await self.upsert.upsert_category(source, result)
        return self.applied(outcome, discovered=1)


class VocabularyDiscoveryHandler(DiscoveryHandler):
    kind = JobKind.VOCABULARY_DISCOVERY
    model = VocabularyDiscoveryJob
    work_model = VocabularyDiscoveryWork

    def root_urls(self, job: VocabularyDiscoveryJob) -> List[str]:
        return [job.source_url] if job.source_url else []

    def result_key(self, result: Any) -> str:
        return result.name.strip().lower()

    async def persist(self, source: str, result: Any) -> AppliedItem:
        outcome = await self.upsert.upsert_vocabulary_entry(source, result)
        return self.applied(outcome, discovered=1)


class MediaDiscoveryHandler(DiscoveryHandler):
    kind = JobKind.MEDIA_DISCOVERY
    model = MediaDiscoveryJob
    work_model = MediaDiscoveryWork

    def root_urls(self, job: MediaDiscoveryJob) -> List[str]:
        return [job.channel_url] if job.channel_url else []

    def result_key(self, result: Any) -> str:
        return result.external_id

    async def persist(self, source: str, result: Any) -> AppliedItem:
        outcome = await self.upsert.upsert_media_item(source, result)
        return self.applied(outcome, discovered=1)

    async def evaluate(self, job: MediaDiscoveryJob, submission: Any) -> Tuple[bool, Optional[int]]:
        if submission.total is not None:
            job.total = submission.total
        return await super().evaluate(job, submission)

    async def make_work(self, job: MediaDiscoveryJob) -> Optional[Any]:
        work = await super().make_work(job)
        if work is not None:
            # Feed batches are not throttled per page
            work.delay_ms = 0
        return work
