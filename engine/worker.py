"""
Stateless worker: runs one work unit against the network and returns a
submission. It never reads or writes the store.

- Discovery kinds share the tick's page budget across the job's root URLs
  and send an incremental submission after every page
- Crawls scrape one item at a time with a jittered pause in between; a
  source that is temporarily unavailable ends the batch early
- Aggregation searches fan out across sources in parallel
- Media processing is delegated to an injected MediaProcessor
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Union
from core.exceptions import NoDriverError
from drivers.base import (
    TRANSIENT_DRIVER_ERRORS, DiscoveryMode, DiscoveryOptions, ItemFound, PageDone, PageFailed, SliceFinished,
)
from drivers.checkpoints import dump_checkpoint
from drivers.registry import DriverRegistry
from engine.budget import PageBudget, remaining_pages
from engine.media import MediaProcessor
from schemas.work import (
    AggregationResult, CatalogDiscoverySubmission, CategoryDiscoverySubmission,
    CrawlResult, DiscoveryWorkBase, ItemCrawlSubmission, ItemCrawlWork,
    MediaDiscoverySubmission, MediaProcessingSubmission, MediaProcessingWork,
    MediaResult, PageError, RecordAggregationSubmission, RecordAggregationWork,
    SliceCursor, VocabularyDiscoverySubmission,
)
import logging

logger = logging.getLogger(__name__)

PartialCallback = Callable[[Any], Union[None, Awaitable[Any]]]

DISCOVERY_SUBMISSIONS = {
    "catalog-discovery": CatalogDiscoverySubmission,
    "category-discovery": CategoryDiscoverySubmission,
    "vocabulary-discovery": VocabularyDiscoverySubmission,
    "media-discovery": MediaDiscoverySubmission,
}

DISCOVERY_MODES = {
    "category-discovery": DiscoveryMode.CATEGORIES,
}


class Worker:
    def __init__(
        self,
        registry: DriverRegistry,
        media_processor: Optional[MediaProcessor] = None,
        worker_id: Optional[str] = None
    ):
        self.registry = registry
        self.media_processor = media_processor
        self.worker_id = worker_id

    async def execute(self, work: Any, on_partial: Optional[PartialCallback] = None) -> Any:
        """Run `work` and return the final submission."""
        logger.info(f"Executing {work.kind} work for job {work.job_id}")

        if work.kind in DISCOVERY_SUBMISSIONS:
            return await self.discover(work, on_partial)
        if isinstance(work, ItemCrawlWork):
            return await self.crawl(work)
        if isinstance(work, RecordAggregationWork):
            return await self.aggregate(work)
        if isinstance(work, MediaProcessingWork):
            return await self.process_media(work)
        raise ValueError(f"Unsupported work kind: {work.kind}")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover(self, work: DiscoveryWorkBase, on_partial: Optional[PartialCallback] = None) -> Any:
        submission_model = DISCOVERY_SUBMISSIONS[work.kind]
        mode = DISCOVERY_MODES.get(work.kind, DiscoveryMode.ITEMS)
        budget = PageBudget(work.pages_per_tick)

        cursor = work.cursor.model_copy(deep=True)
        results: List[Any] = []
        page_errors: List[PageError] = []
        total: Optional[int] = None

        def submission(**fields: Any) -> Any:
            extra = {"total": total} if work.kind == "media-discovery" else {}
            return submission_model(
                job_id=work.job_id,
                worker_id=self.worker_id,
                results=list(results),
                page_errors=list(page_errors),
                **extra,
                **fields
            )

        while cursor.url_index < len(work.urls) and not budget.exhausted:
            url = work.urls[cursor.url_index]
            driver = self.registry.require(url)
            options = DiscoveryOptions(
                url=url,
                checkpoint=cursor.driver,
                max_pages=remaining_pages(work.pages_per_tick, budget.used),
                delay_ms=work.delay_ms,
                mode=mode
            )

            finished: Optional[SliceFinished] = None
            async for step in driver.discover_items(options):
                if isinstance(step, ItemFound):
                    results.append(step.item)
                elif isinstance(step, PageFailed):
                    page_errors.append(PageError(url=step.url, error=step.error, page_index=step.page_index))
                elif isinstance(step, PageDone):
                    total = getattr(step.checkpoint, "total", None) or total
                    if on_partial is not None:
                        progress = SliceCursor(url_index=cursor.url_index, driver=dump_checkpoint(step.checkpoint))
                        await _call(on_partial, submission(checkpoint=progress, done=False, final=False))
                        results.clear()
                        page_errors.clear()
                elif isinstance(step, SliceFinished):
                    finished = step

            budget.consume(finished.pages_used if finished else 0)
            if finished is not None and finished.done:
                logger.info(f"[{driver.slug}] finished {url}")
                cursor = SliceCursor(url_index=cursor.url_index + 1)
            else:
                cursor = SliceCursor(
                    url_index=cursor.url_index,
                    driver=dump_checkpoint(finished.checkpoint) if finished else cursor.driver
                )
                break

        done = cursor.url_index >= len(work.urls)
        return submission(checkpoint=None if done else cursor, done=done, final=True)

    # ------------------------------------------------------------------
    # Crawl
    # ------------------------------------------------------------------

    async def crawl(self, work: ItemCrawlWork) -> ItemCrawlSubmission:
        results: List[CrawlResult] = []

        for index, target in enumerate(work.targets):
            driver = self.registry.get(target.source) or self.registry.resolve(target.url)
            if driver is None:
                results.append(CrawlResult(url=target.url, source=target.source, error=f"No driver for source {target.source}"))
                continue

            if index > 0:
                await driver.pause(work.delay_ms)

            try:
                data = await driver.scrape_item(target.url)
            except TRANSIENT_DRIVER_ERRORS as e:
                # Unscraped targets stay outstanding for the next tick
                logger.warning(
                    f"[{driver.slug}] source unavailable at {target.url}, "
                    f"leaving {len(work.targets) - index} item(s) for the next tick: {e.message}"
                )
                break
            except Exception as e:
                logger.warning(f"[{driver.slug}] scrape of {target.url} failed: {getattr(e, 'message', None) or e}")
                results.append(CrawlResult(
                    url=target.url,
                    source=target.source,
                    error=getattr(e, "message", None) or f"{type(e).__name__}: {e}"
                ))
                continue

            if data is None:
                results.append(CrawlResult(url=target.url, source=target.source, error="Item not found"))
            else:
                results.append(CrawlResult(url=target.url, source=target.source, data=data))

        return ItemCrawlSubmission(job_id=work.job_id, worker_id=self.worker_id, results=results, done=True)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    async def _search(self, slug: str, query: str, max_results: int) -> List[Any]:
        driver = self.registry.get(slug)
        if driver is None:
            raise NoDriverError(f"No driver registered for source '{slug}'", context={"source": slug})
        return await driver.search_items(query, max_results)

    async def aggregate(self, work: RecordAggregationWork) -> RecordAggregationSubmission:
        calls = []
        for target in work.targets:
            for slug in target.missing_sources:
                calls.append((target, slug, self._search(slug, target.natural_key, work.max_search_results)))

        outcomes = await asyncio.gather(*(call for _, _, call in calls), return_exceptions=True)

        results = {t.natural_key: AggregationResult(natural_key=t.natural_key) for t in work.targets}
        for (target, slug, _), outcome in zip(calls, outcomes):
            result = results[target.natural_key]
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                result.search_errors.append(f"{slug}: {getattr(outcome, 'message', str(outcome))}")
                continue
            result.matches.extend(
                item.model_copy(update={"source": item.source or slug})
                for item in outcome if item.natural_key == target.natural_key
            )

        return RecordAggregationSubmission(
            job_id=work.job_id,
            worker_id=self.worker_id,
            results=list(results.values()),
            checkpoint=work.cursor,
            done=True
        )

    # ------------------------------------------------------------------
    # Media processing
    # ------------------------------------------------------------------

    async def process_media(self, work: MediaProcessingWork) -> MediaProcessingSubmission:
        results: List[MediaResult] = []

        for url in work.urls:
            if self.media_processor is None:
                results.append(MediaResult(url=url, error="No media processor configured"))
                continue
            try:
                outcome = await self.media_processor.process(url, work.options)
            except Exception as e:
                logger.error(f"Media processing failed for {url}: {e}")
                results.append(MediaResult(url=url, error=getattr(e, "message", None) or str(e)))
                continue
            results.append(MediaResult(url=url, segments=outcome.segments, tokens_used=outcome.tokens_used))

        return MediaProcessingSubmission(job_id=work.job_id, worker_id=self.worker_id, results=results, done=True)


async def _call(callback: PartialCallback, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
