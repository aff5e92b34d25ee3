"""
Item crawl handler.

Scopes:
- all: every uncrawled item of the job's source(s); with refresh=recrawl,
  items crawled before the age cutoff are reset first
- selected_urls: an explicit URL list
- selected_keys: items whose natural key is listed
- from_discovery: the URLs a catalog discovery job found

Progress is the job's result ledger: a URL is outstanding until the job
has applied it, so the checkpoint stays empty.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select
from core.exceptions import MalformedScopeError, NoDriverError, UpsertError
from engine.budget import ItemBudget
from engine.handlers.base import AppliedItem, JobHandler
from engine.upsert import canonical_url
from models.base import CrawlScope, JobKind, RefreshMode
from models.job import CatalogDiscoveryJob, ItemCrawlJob
from models.job_result import JobResult
from models.record import SourceItem
from schemas.work import CrawlTarget, ItemCrawlWork
import logging

logger = logging.getLogger(__name__)

AGE_UNITS = ("hours", "days")


class ItemCrawlHandler(JobHandler):
    kind = JobKind.ITEM_CRAWL
    model = ItemCrawlJob

    def is_priority(self, job: ItemCrawlJob) -> bool:
        return job.scope != CrawlScope.ALL

    def sources(self, job: ItemCrawlJob) -> List[str]:
        if job.source and job.source != "all":
            return [job.source]
        return self.registry.slugs()

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    async def initialise(self, job: ItemCrawlJob) -> None:
        if job.source and job.source != "all" and self.registry.get(job.source) is None:
            raise NoDriverError(
                f"No driver registered for source '{job.source}'",
                context={"job_id": job.id, "source": job.source}
            )

        if job.scope == CrawlScope.SELECTED_URLS:
            urls = [u for u in (job.urls or []) if u and u.strip()]
            if not urls:
                raise MalformedScopeError("selected_urls crawl has no URLs", context={"job_id": job.id})
            for url in urls:
                self._canonical_or_fail(job, url)
                self.registry.require(url)

        elif job.scope == CrawlScope.SELECTED_KEYS:
            if not [k for k in (job.natural_keys or []) if k]:
                raise MalformedScopeError("selected_keys crawl has no natural keys", context={"job_id": job.id})

        elif job.scope == CrawlScope.FROM_DISCOVERY:
            if job.discovery_id is None or await self.store.find_by_id(CatalogDiscoveryJob, job.discovery_id) is None:
                raise MalformedScopeError(
                    f"from_discovery crawl references unknown discovery job {job.discovery_id}",
                    context={"job_id": job.id, "discovery_id": job.discovery_id}
                )

        elif job.refresh == RefreshMode.RECRAWL:
            cutoff = self.recrawl_cutoff(job)
            for source in self.sources(job):
                await self.upsert.reset_items(source, crawled_before=cutoff)

        job.total = await self.remaining(job)

    def recrawl_cutoff(self, job: ItemCrawlJob) -> Optional[datetime]:
        if not job.min_crawl_age:
            return None
        unit = job.crawl_age_unit if job.crawl_age_unit in AGE_UNITS else "days"
        return datetime.utcnow() - timedelta(**{unit: job.min_crawl_age})

    def _canonical_or_fail(self, job: ItemCrawlJob, url: str) -> str:
        try:
            return canonical_url(url)
        except UpsertError as e:
            raise MalformedScopeError(
                f"Invalid URL in scope: {url!r}",
                context={"job_id": job.id, "url": url},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    async def scoped_urls(self, job: ItemCrawlJob) -> List[Tuple[str, Optional[str]]]:
        """(canonical url, known source) for explicit scopes, in scope order."""
        if job.scope == CrawlScope.SELECTED_URLS:
            return [(canonical_url(u), None) for u in job.urls or [] if u and u.strip()]

        if job.scope == CrawlScope.SELECTED_KEYS:
            where = [SourceItem.natural_key.in_(list(job.natural_keys or []))]
            if job.source and job.source != "all":
                where.append(SourceItem.source == job.source)
            items = await self.store.find(SourceItem, *where, order_by=(SourceItem.id,))
            return [(item.source_url, item.source) for item in items]

        # from_discovery
        keys = await self.store.scalars(
            select(JobResult.record_key)
            .where(
                JobResult.job_kind == JobKind.CATALOG_DISCOVERY,
                JobResult.job_id == job.discovery_id,
                JobResult.outcome != "error"
            )
            .order_by(JobResult.id)
        )
        return [(key, None) for key in keys]

    async def targets(self, job: ItemCrawlJob, budget: ItemBudget) -> List[CrawlTarget]:
        if job.scope == CrawlScope.ALL:
            items = await self.upsert.find_outstanding(self.sources(job), self.kind, job.id, limit=budget.max_items)
            return [CrawlTarget(url=item.source_url, source=item.source) for item in items]

        scoped = await self.scoped_urls(job)
        applied = await self.applied_keys(job.id)
        outstanding = {}
        for url, source in scoped:
            if url not in applied:
                outstanding.setdefault(url, source)

        return [
            CrawlTarget(url=url, source=source or self.registry.require(url).slug)
            for url, source in budget.take(list(outstanding.items()))
        ]

    async def remaining(self, job: ItemCrawlJob) -> int:
        if job.scope == CrawlScope.ALL:
            return await self.upsert.count_outstanding(self.sources(job), self.kind, job.id)
        return len(await self.targets(job, ItemBudget()))

    async def make_work(self, job: ItemCrawlJob) -> Optional[ItemCrawlWork]:
        targets = await self.targets(job, self.item_budget(job))
        if not targets:
            return None
        return ItemCrawlWork(job_id=job.id, targets=targets, delay_ms=self.delay_ms(job))

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def persist(self, result: Any) -> AppliedItem:
        if result.data is None:
            error = result.error or "Item not found"
            failed = await self.upsert.mark_failed(result.source, result.url, error)
            return AppliedItem(
                record_id=failed.record.id if failed else None,
                outcome="error",
                error=error,
                deltas={"discovered": 1}
            )

        outcome = await self.upsert.upsert_scraped_item(result.source, result.url, result.data)
        return self.applied(outcome, discovered=1, processed=1)

    async def apply_submission(self, job: ItemCrawlJob, submission: Any, counts: Dict[str, int]) -> None:
        keyed = []
        for result in submission.results:
            try:
                key = canonical_url(result.url)
            except UpsertError:
                key = result.url
            keyed.append((key, result))
        await self.apply_results(job, keyed, self.persist, counts)

    async def evaluate(self, job: ItemCrawlJob, submission: Any) -> Tuple[bool, Optional[int]]:
        remaining = await self.remaining(job)
        return remaining == 0, remaining
