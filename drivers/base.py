"""
Driver contract shared by every source integration.

A driver talks to one external source and nothing else: it never reads or
writes the job store. Discovery is exposed as an async stream of steps for
one budgeted slice of a traversal:

    ItemFound      one discovered item and the page it came from
    PageFailed     a page or branch that failed terminally (already skipped)
    PageDone       emitted after every page with the checkpoint as of that page
    SliceFinished  last step: whether the traversal is complete, pages used,
                   and the checkpoint to resume from (None once complete)

The same checkpoint and budget always produce the same slice, so a tick
that is re-run after a crash repeats exactly the work it lost. A transient
failure ends the slice early with the checkpoint still pointing at the
failed page, so the next slice retries it.
"""

import asyncio
import enum
import inspect
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Type, TypeVar, Union
from pydantic import BaseModel, ValidationError
from core.exceptions import CircuitOpenError, PageFetchError, RetryableError, UnsupportedOperationError
from engine.urls import host_matches
from schemas.items import DiscoveredItem, ScrapedItem
import logging

logger = logging.getLogger(__name__)

# A page that fails with one of these is retried on a later slice, never skipped
TRANSIENT_DRIVER_ERRORS = (RetryableError, CircuitOpenError)

R = TypeVar("R", bound=BaseModel)


class DriverKind(str, enum.Enum):
    """Closed set of driver implementations the registry can hold"""
    CATEGORY_TREE = "category_tree"
    PAGED_API = "paged_api"
    TERM_SEARCH = "term_search"
    MEDIA_FEED = "media_feed"


class DiscoveryMode(str, enum.Enum):
    ITEMS = "items"
    CATEGORIES = "categories"


@dataclass
class DiscoveryOptions:
    url: str
    checkpoint: Union[None, dict, BaseModel] = None
    max_pages: Optional[int] = None
    delay_ms: int = 0
    mode: DiscoveryMode = DiscoveryMode.ITEMS


@dataclass
class ItemFound:
    item: Any
    page_index: int


@dataclass
class PageFailed:
    url: str
    error: str
    page_index: int


@dataclass
class PageDone:
    checkpoint: Optional[BaseModel]
    page_index: int
    pages_used: int


@dataclass
class SliceFinished:
    done: bool
    pages_used: int
    checkpoint: Optional[BaseModel]


DiscoveryStep = Union[ItemFound, PageFailed, PageDone, SliceFinished]


@dataclass
class DiscoveryResult:
    done: bool
    pages_used: int
    checkpoint: Optional[BaseModel]
    items: List[Any] = field(default_factory=list)
    page_errors: List[PageFailed] = field(default_factory=list)


class SourceDriver(ABC):
    """
    Base class for source drivers.

    Subclasses set `kind` and implement `discover_items`; `scrape_item` and
    `search_items` are optional capabilities.
    """

    kind: DriverKind
    supports_search: bool = False

    def __init__(
        self,
        slug: str,
        hosts: Iterable[str],
        delay_ms: int = 0,
        rng: Optional[random.Random] = None
    ):
        self.slug = slug
        self.hosts = [h.lower() for h in hosts]
        self.delay_ms = delay_ms
        self.rng = rng or random.Random()

    def matches(self, url: str) -> bool:
        return host_matches(url, self.hosts)

    @abstractmethod
    def discover_items(self, options: DiscoveryOptions) -> AsyncIterator[DiscoveryStep]:
        """Yield the steps of one budgeted slice, ending with SliceFinished."""

    async def scrape_item(self, identity: str) -> Optional[ScrapedItem]:
        """Fetch full detail for one item; None when the item does not exist."""
        raise UnsupportedOperationError(
            f"Driver {self.slug} cannot scrape items",
            context={"source": self.slug}
        )

    async def search_items(self, query: str, max_results: int = 50) -> List[DiscoveredItem]:
        raise UnsupportedOperationError(
            f"Driver {self.slug} does not support search",
            context={"source": self.slug}
        )

    async def pause(self, delay_ms: Optional[int] = None) -> None:
        """Sleep for the delay hint with +/-25% jitter."""
        delay = self.delay_ms if delay_ms is None else delay_ms
        if delay <= 0:
            return
        jittered = delay * (0.75 + self.rng.random() * 0.5)
        await asyncio.sleep(jittered / 1000)

    async def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(slug={self.slug!r}, hosts={self.hosts!r})"


def parse_record(model: Type[R], data: Any, source: str, url: str) -> R:
    """Validate one record from a source response; malformed data raises PageFetchError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise PageFetchError(
            f"Malformed {model.__name__} from {url}: {e.error_count()} validation error(s)",
            context={"source": source, "url": url},
            original_exception=e
        )


Callback = Callable[..., Union[None, Awaitable[None]]]


async def _call(callback: Optional[Callback], *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


async def run_discovery(
    driver: SourceDriver,
    options: DiscoveryOptions,
    on_item: Optional[Callback] = None,
    on_progress: Optional[Callback] = None,
    on_error: Optional[Callback] = None
) -> DiscoveryResult:
    """
    Consume one slice of `driver.discover_items`.

    on_item(item, page_index), on_progress(checkpoint, pages_used) and
    on_error(url, error) may be plain functions or coroutines.
    """
    result = DiscoveryResult(done=False, pages_used=0, checkpoint=None)

    async for step in driver.discover_items(options):
        if isinstance(step, ItemFound):
            result.items.append(step.item)
            await _call(on_item, step.item, step.page_index)
        elif isinstance(step, PageFailed):
            result.page_errors.append(step)
            await _call(on_error, step.url, step.error)
        elif isinstance(step, PageDone):
            result.pages_used = step.pages_used
            await _call(on_progress, step.checkpoint, step.pages_used)
        elif isinstance(step, SliceFinished):
            result.done = step.done
            result.pages_used = step.pages_used
            result.checkpoint = step.checkpoint

    return result
