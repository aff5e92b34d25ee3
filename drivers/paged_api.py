"""
Paginated JSON catalog API driver.

Pages are requested as `?page=N`; records are read from a top-level list or
from `data`/`results`/`items`, and `has_next` ends the traversal. A page
that fails terminally is skipped; after MAX_CONSECUTIVE_FAILURES skipped
pages in a row the source is treated as exhausted. Transient failures end
the slice without moving past the page.
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from core.exceptions import DriverError, ResourceNotFoundError
from drivers.base import (
    TRANSIENT_DRIVER_ERRORS, DiscoveryOptions, DiscoveryStep, DriverKind,
    ItemFound, PageDone, PageFailed, SliceFinished, SourceDriver, parse_record,
)
from drivers.checkpoints import PagedCheckpoint, expect_checkpoint
from drivers.http import HttpFetcher
from engine.budget import PageBudget
from schemas.items import DiscoveredItem, ScrapedItem
import logging

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 3


def extract_records(data: Any) -> Tuple[List[Dict[str, Any]], Optional[bool]]:
    """Return (records, has_next) for the response shapes APIs commonly use."""
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)], None
    if isinstance(data, dict):
        records = data.get("items", data.get("data", data.get("results", [])))
        if not isinstance(records, list):
            records = []
        has_next = data.get("has_next")
        return [r for r in records if isinstance(r, dict)], (bool(has_next) if has_next is not None else None)
    return [], None


class PagedApiDriver(SourceDriver):
    """Catalog exposed as a page-numbered JSON API, with optional search"""

    kind = DriverKind.PAGED_API

    def __init__(
        self,
        slug: str,
        hosts,
        search_url: Optional[str] = None,
        page_size: int = 100,
        fetcher: Optional[HttpFetcher] = None,
        **kwargs
    ):
        super().__init__(slug, hosts, **kwargs)
        self.search_url = search_url
        self.page_size = page_size
        self.fetcher = fetcher or HttpFetcher(source=slug)

    @property
    def supports_search(self) -> bool:
        return self.search_url is not None

    async def fetch_page(self, url: str, page: int) -> Tuple[List[DiscoveredItem], bool]:
        data = await self.fetcher.get_json(url, params={"page": page, "per_page": self.page_size})
        records, has_next = extract_records(data)
        items = [self._to_item(r, url) for r in records if r.get("url")]
        if has_next is None:
            has_next = len(records) >= self.page_size
        return items, has_next and bool(records)

    async def discover_items(self, options: DiscoveryOptions) -> AsyncIterator[DiscoveryStep]:
        state = expect_checkpoint(options.checkpoint, PagedCheckpoint) or PagedCheckpoint()
        budget = PageBudget(options.max_pages)
        delay_ms = options.delay_ms if options.delay_ms else self.delay_ms
        done = False

        while not budget.exhausted:
            page = state.next_page
            budget.consume()
            try:
                items, has_next = await self.fetch_page(options.url, page)
            except TRANSIENT_DRIVER_ERRORS as e:
                logger.warning(f"[{self.slug}] page {page} of {options.url} unavailable, retrying next slice: {e.message}")
                break
            except DriverError as e:
                logger.warning(f"[{self.slug}] page {page} of {options.url} failed: {e.message}")
                yield PageFailed(url=options.url, error=e.message, page_index=page)
                state.next_page += 1
                state.consecutive_failures += 1
                done = state.consecutive_failures >= MAX_CONSECUTIVE_FAILURES
            else:
                for item in items:
                    yield ItemFound(item=item, page_index=page)
                state.next_page += 1
                state.consecutive_failures = 0
                done = not has_next

            yield PageDone(checkpoint=state.model_copy(deep=True), page_index=page, pages_used=budget.used)
            if done:
                break
            await self.pause(delay_ms)

        yield SliceFinished(done=done, pages_used=budget.used, checkpoint=None if done else state)

    async def scrape_item(self, identity: str) -> Optional[ScrapedItem]:
        try:
            data = await self.fetcher.get_json(identity)
        except ResourceNotFoundError:
            return None
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict):
            return None
        return parse_record(ScrapedItem, data, self.slug, identity)

    async def search_items(self, query: str, max_results: int = 50) -> List[DiscoveredItem]:
        if self.search_url is None:
            return await super().search_items(query, max_results)
        data = await self.fetcher.get_json(self.search_url, params={"q": query, "per_page": max_results})
        records, _ = extract_records(data)
        return [self._to_item(r, self.search_url) for r in records[:max_results] if r.get("url")]

    def _to_item(self, record: Dict[str, Any], url: str) -> DiscoveredItem:
        return parse_record(DiscoveredItem, {**record, "source": self.slug}, self.slug, url)

    async def close(self) -> None:
        await self.fetcher.close()
