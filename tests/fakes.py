"""
In-memory stand-ins for network-facing collaborators.

The drivers subclass the real implementations and only replace their fetch
methods, so traversal, checkpointing and budgeting run unchanged.
"""

from typing import Any, Dict, List, Optional, Tuple, Union
from drivers.base import DiscoveryOptions, SliceFinished
from drivers.category_tree import CategoryTreeDriver, ListingPage
from drivers.paged_api import PagedApiDriver
from drivers.term_search import TermSearchDriver
from engine.media import MediaProcessingResult
from engine.urls import normalize_url
from schemas.items import DiscoveredItem, DiscoveredVocabularyEntry, ScrapedItem

PageValue = Union[List[Any], Exception]


class StaticPagedDriver(PagedApiDriver):
    """Paged catalog served from a dict of page number -> items (or an exception to raise)"""

    def __init__(
        self,
        slug: str,
        hosts,
        pages: Optional[Dict[int, PageValue]] = None,
        details: Optional[Dict[str, Union[ScrapedItem, Exception, None]]] = None,
        search_results: Optional[List[DiscoveredItem]] = None,
        **kwargs
    ):
        search_url = f"https://{hosts[0]}/search" if search_results is not None else None
        super().__init__(slug, hosts, search_url=search_url, **kwargs)
        self.pages = pages or {}
        self.details = details or {}
        self.search_results = search_results or []
        self.fetched: List[Tuple[str, int]] = []
        self.scraped: List[str] = []
        self.searched: List[str] = []

    async def fetch_page(self, url: str, page: int) -> Tuple[List[DiscoveredItem], bool]:
        self.fetched.append((url, page))
        value = self.pages.get(page, [])
        if isinstance(value, Exception):
            raise value
        last_page = max(self.pages) if self.pages else 0
        return list(value), page < last_page

    async def scrape_item(self, identity: str) -> Optional[ScrapedItem]:
        self.scraped.append(identity)
        value = self.details.get(normalize_url(identity))
        if isinstance(value, Exception):
            raise value
        return value

    async def search_items(self, query: str, max_results: int = 50) -> List[DiscoveredItem]:
        self.searched.append(query)
        return [item for item in self.search_results if item.natural_key == query][:max_results]


class StaticTreeDriver(CategoryTreeDriver):
    """Category tree served from {url: [ListingPage per page index]}"""

    def __init__(self, slug: str, hosts, listings: Dict[str, Union[List[ListingPage], Exception]], **kwargs):
        super().__init__(slug, hosts, **kwargs)
        self.listings = {normalize_url(url): value for url, value in listings.items()}
        self.fetched: List[Tuple[str, int]] = []

    async def fetch_listing(self, url: str, page_index: int) -> ListingPage:
        self.fetched.append((url, page_index))
        value = self.listings.get(normalize_url(url), [ListingPage()])
        if isinstance(value, Exception):
            raise value
        return value[page_index]


class StaticTermDriver(TermSearchDriver):
    """Term search over a fixed vocabulary; a term matches names starting with it"""

    def __init__(
        self,
        slug: str,
        hosts,
        names: List[str],
        terms: Optional[List[str]] = None,
        failing_terms: Optional[Dict[str, Exception]] = None,
        **kwargs
    ):
        super().__init__(slug, hosts, **kwargs)
        self.names = sorted(names)
        self.terms = terms
        self.failing_terms = failing_terms or {}
        self.checked: List[str] = []

    def initial_terms(self) -> List[str]:
        return list(self.terms) if self.terms is not None else super().initial_terms()

    def _matches(self, term: str) -> List[str]:
        return [name for name in self.names if name.lower().startswith(term)]

    async def count_results(self, term: str) -> int:
        self.checked.append(term)
        if term in self.failing_terms:
            raise self.failing_terms[term]
        return len(self._matches(term))

    async def fetch_term_page(self, term: str, page: int) -> List[DiscoveredVocabularyEntry]:
        start = (page - 1) * self.page_size
        return [
            DiscoveredVocabularyEntry(name=name)
            for name in self._matches(term)[start:start + self.page_size]
        ]


class StaticFeedFetcher:
    """Returns a canned feed body, or raises the given error"""

    def __init__(self, body: str = "", error: Optional[Exception] = None):
        self.body = body
        self.error = error
        self.calls = 0

    async def get_text(self, url: str, params=None) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.body

    async def close(self) -> None:
        pass


class StaticMediaProcessor:
    def __init__(self, segments=None, tokens_used: int = 0, error: Optional[Exception] = None):
        self.segments = segments or [{"start": 0.0, "end": 4.2, "label": "intro"}]
        self.tokens_used = tokens_used
        self.error = error
        self.processed: List[str] = []

    async def process(self, url: str, options=None) -> MediaProcessingResult:
        self.processed.append(url)
        if self.error is not None:
            raise self.error
        return MediaProcessingResult(segments=self.segments, tokens_used=self.tokens_used)


async def drain(driver, url: str, max_pages: Optional[int] = None, mode=None) -> Tuple[List[Any], int]:
    """
    Run a traversal to completion in slices of `max_pages`, resuming from
    each slice's checkpoint. Returns (items, number of slices).
    """
    items: List[Any] = []
    checkpoint = None
    slices = 0
    while True:
        slices += 1
        options = DiscoveryOptions(url=url, checkpoint=checkpoint, max_pages=max_pages)
        if mode is not None:
            options.mode = mode
        finished = None
        async for step in driver.discover_items(options):
            if isinstance(step, SliceFinished):
                finished = step
            elif hasattr(step, "item"):
                items.append(step.item)
        if finished.done:
            return items, slices
        checkpoint = finished.checkpoint.model_dump(mode="json")
        if slices > 500:
            raise AssertionError("traversal did not terminate")
