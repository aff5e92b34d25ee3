"""
Vocabulary enumeration through a term search endpoint.

Sources like ingredient databases only expose search, and cap how many
results one query can page through. The driver walks a queue of search
terms (a-z to start); a term whose result count exceeds what can be paged
is replaced by its sub-terms (term + each letter), otherwise its result
pages are fetched one by one. A term check or result page that fails
transiently is left in place for the next slice.
"""

import string
from abc import abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional
from core.exceptions import DriverError, PageFetchError
from drivers.base import (
    TRANSIENT_DRIVER_ERRORS, DiscoveryOptions, DiscoveryStep, DriverKind,
    ItemFound, PageDone, PageFailed, SliceFinished, SourceDriver, parse_record,
)
from drivers.checkpoints import TermQueueCheckpoint, expect_checkpoint
from drivers.http import HttpFetcher
from engine.budget import PageBudget
from schemas.items import DiscoveredVocabularyEntry
import logging

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_lowercase


@dataclass
class TermCheck:
    total_results: int
    total_pages: int
    split: bool


class TermSearchDriver(SourceDriver):
    """Subclasses implement `count_results` and `fetch_term_page`."""

    kind = DriverKind.TERM_SEARCH

    def __init__(self, slug: str, hosts, page_size: int = 200, max_pages_per_term: int = 50, **kwargs):
        super().__init__(slug, hosts, **kwargs)
        self.page_size = page_size
        self.max_pages_per_term = max_pages_per_term

    def initial_terms(self) -> List[str]:
        return list(ALPHABET)

    @abstractmethod
    async def count_results(self, term: str) -> int:
        """Number of results the source reports for `term`."""

    @abstractmethod
    async def fetch_term_page(self, term: str, page: int) -> List[DiscoveredVocabularyEntry]:
        """Fetch result page `page` (1-based) for `term`."""

    async def check_term(self, term: str) -> TermCheck:
        total = await self.count_results(term)
        total_pages = -(-total // self.page_size) if total else 0
        return TermCheck(
            total_results=total,
            total_pages=total_pages,
            split=total_pages > self.max_pages_per_term,
        )

    async def discover_items(self, options: DiscoveryOptions) -> AsyncIterator[DiscoveryStep]:
        state = expect_checkpoint(options.checkpoint, TermQueueCheckpoint)
        if state is None:
            state = TermQueueCheckpoint(term_queue=self.initial_terms())

        budget = PageBudget(options.max_pages)
        delay_ms = options.delay_ms if options.delay_ms else self.delay_ms

        while not budget.exhausted:
            if state.current_term is None:
                if not state.term_queue:
                    break
                term = state.term_queue.pop(0)
                budget.consume()
                try:
                    check = await self.check_term(term)
                except TRANSIENT_DRIVER_ERRORS as e:
                    logger.warning(f"[{self.slug}] term '{term}' check unavailable, retrying next slice: {e.message}")
                    state.term_queue.insert(0, term)
                    break
                except DriverError as e:
                    logger.warning(f"[{self.slug}] term '{term}' check failed: {e.message}")
                    yield PageFailed(url=options.url, error=f"term '{term}': {e.message}", page_index=0)
                else:
                    if check.split:
                        logger.info(f"[{self.slug}] term '{term}' has {check.total_results} results, splitting")
                        state.term_queue = [term + c for c in ALPHABET] + state.term_queue
                    elif check.total_pages > 0:
                        state.current_term = term
                        state.current_page = 1
                        state.total_pages_for_term = check.total_pages
                yield PageDone(checkpoint=state.model_copy(deep=True), page_index=0, pages_used=budget.used)
                await self.pause(delay_ms)
                continue

            term = state.current_term
            page = state.current_page
            budget.consume()
            try:
                entries = await self.fetch_term_page(term, page)
            except TRANSIENT_DRIVER_ERRORS as e:
                logger.warning(f"[{self.slug}] term '{term}' page {page} unavailable, retrying next slice: {e.message}")
                break
            except DriverError as e:
                logger.warning(f"[{self.slug}] term '{term}' page {page} failed: {e.message}")
                yield PageFailed(url=options.url, error=f"term '{term}' page {page}: {e.message}", page_index=page)
            else:
                for entry in entries:
                    yield ItemFound(item=entry.model_copy(update={"source": self.slug}), page_index=page)

            state.current_page += 1
            if state.current_page > state.total_pages_for_term:
                state.current_term = None
                state.current_page = 1
                state.total_pages_for_term = 0

            yield PageDone(checkpoint=state.model_copy(deep=True), page_index=page, pages_used=budget.used)
            await self.pause(delay_ms)

        done = state.current_term is None and not state.term_queue
        yield SliceFinished(done=done, pages_used=budget.used, checkpoint=None if done else state)


class JsonTermSearchDriver(TermSearchDriver):
    """
    Term search served as JSON.

    GET {search_url}?q=<term>&page=<n>&page_size=<size> returns
        {"total": 1234, "items": [{"name": ..., "cas_number": ...}, ...]}
    """

    def __init__(self, slug: str, hosts, search_url: str, fetcher: Optional[HttpFetcher] = None, **kwargs):
        super().__init__(slug, hosts, **kwargs)
        self.search_url = search_url
        self.fetcher = fetcher or HttpFetcher(source=slug)

    async def count_results(self, term: str) -> int:
        data = await self.fetcher.get_json(self.search_url, params={"q": term, "page": 1, "page_size": 1})
        if not isinstance(data, dict) or "total" not in data:
            raise PageFetchError(
                f"Search response for '{term}' has no total",
                context={"source": self.slug, "term": term}
            )
        try:
            return int(data["total"])
        except (TypeError, ValueError) as e:
            raise PageFetchError(
                f"Search response for '{term}' has an invalid total: {data['total']!r}",
                context={"source": self.slug, "term": term},
                original_exception=e
            )

    async def fetch_term_page(self, term: str, page: int) -> List[DiscoveredVocabularyEntry]:
        data = await self.fetcher.get_json(
            self.search_url,
            params={"q": term, "page": page, "page_size": self.page_size}
        )
        records = data.get("items") if isinstance(data, dict) else None
        if not isinstance(records, list):
            raise PageFetchError(
                f"Search response for '{term}' page {page} has no items",
                context={"source": self.slug, "term": term, "page": page}
            )
        return [
            parse_record(DiscoveredVocabularyEntry, r, self.slug, self.search_url)
            for r in records if isinstance(r, dict) and r.get("name")
        ]

    async def close(self) -> None:
        await self.fetcher.close()
