"""
Breadth-first category tree traversal with leaf pagination.

Branch pages list child categories; leaf pages list items and may span
several pages. The checkpoint keeps the BFS queue, the visited set and the
leaf currently being paginated, so a slice can stop after any page. A
branch or leaf page that fails transiently stays at the head of the
checkpoint for the next slice.
"""

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional
from core.exceptions import DriverError, PageFetchError, ResourceNotFoundError
from drivers.base import (
    TRANSIENT_DRIVER_ERRORS, DiscoveryMode, DiscoveryOptions, DiscoveryStep, DriverKind,
    ItemFound, PageDone, PageFailed, SliceFinished, SourceDriver, parse_record,
)
from drivers.checkpoints import CategoryTreeCheckpoint, TreeLeaf, TreeNode, expect_checkpoint
from drivers.http import HttpFetcher
from engine.budget import PageBudget
from engine.urls import normalize_url
from schemas.items import DiscoveredCategory, DiscoveredItem, ScrapedItem
import logging

logger = logging.getLogger(__name__)


@dataclass
class ListingPage:
    """One fetched page of a category listing"""
    name: Optional[str] = None
    children: List[str] = field(default_factory=list)
    items: List[DiscoveredItem] = field(default_factory=list)
    page_count: int = 1


class CategoryTreeDriver(SourceDriver):
    """Subclasses provide `fetch_listing`; traversal and checkpointing live here."""

    kind = DriverKind.CATEGORY_TREE

    @abstractmethod
    async def fetch_listing(self, url: str, page_index: int) -> ListingPage:
        """Fetch page `page_index` (0-based) of the listing at `url`."""

    async def discover_items(self, options: DiscoveryOptions) -> AsyncIterator[DiscoveryStep]:
        state = expect_checkpoint(options.checkpoint, CategoryTreeCheckpoint)
        if state is None:
            state = CategoryTreeCheckpoint(queue=[TreeNode(url=normalize_url(options.url))])

        budget = PageBudget(options.max_pages)
        visited = set(state.visited)
        delay_ms = options.delay_ms if options.delay_ms else self.delay_ms

        while not budget.exhausted:
            # ----------------------------------------------------------
            # Continue paginating the current leaf
            # ----------------------------------------------------------
            if state.current_leaf is not None:
                leaf = state.current_leaf
                page_index = leaf.next_page_index
                budget.consume()
                try:
                    page = await self.fetch_listing(leaf.category_url, page_index)
                except TRANSIENT_DRIVER_ERRORS as e:
                    logger.warning(
                        f"[{self.slug}] leaf page {page_index} of {leaf.category_url} unavailable, "
                        f"retrying next slice: {e.message}"
                    )
                    break
                except DriverError as e:
                    logger.warning(f"[{self.slug}] leaf page {page_index} of {leaf.category_url} failed: {e.message}")
                    yield PageFailed(url=leaf.category_url, error=e.message, page_index=page_index)
                else:
                    leaf.page_count = max(page.page_count, 1)
                    for item in page.items:
                        yield ItemFound(item=self._tag_item(item, leaf.category, leaf.category_url), page_index=page_index)

                leaf.next_page_index += 1
                if leaf.next_page_index >= leaf.page_count:
                    state.current_leaf = None

                yield PageDone(checkpoint=state.model_copy(deep=True), page_index=page_index, pages_used=budget.used)
                await self.pause(delay_ms)
                continue

            # ----------------------------------------------------------
            # Visit the next branch in BFS order
            # ----------------------------------------------------------
            if not state.queue:
                break

            node = state.queue.pop(0)
            if node.url in visited:
                continue

            budget.consume()
            try:
                page = await self.fetch_listing(node.url, 0)
            except TRANSIENT_DRIVER_ERRORS as e:
                logger.warning(f"[{self.slug}] category {node.url} unavailable, retrying next slice: {e.message}")
                state.queue.insert(0, node)
                break
            except DriverError as e:
                visited.add(node.url)
                state.visited.append(node.url)
                logger.warning(f"[{self.slug}] category {node.url} failed: {e.message}")
                yield PageFailed(url=node.url, error=e.message, page_index=0)
                yield PageDone(checkpoint=state.model_copy(deep=True), page_index=0, pages_used=budget.used)
                await self.pause(delay_ms)
                continue

            visited.add(node.url)
            state.visited.append(node.url)
            path = node.path + [page.name] if page.name else list(node.path)

            if options.mode == DiscoveryMode.CATEGORIES:
                yield ItemFound(
                    item=DiscoveredCategory(url=node.url, name=page.name, path=path, source=self.slug),
                    page_index=0
                )

            if page.children:
                for child in page.children:
                    child_url = normalize_url(child)
                    if child_url not in visited:
                        state.queue.append(TreeNode(url=child_url, path=path))
            elif options.mode == DiscoveryMode.ITEMS:
                for item in page.items:
                    yield ItemFound(item=self._tag_item(item, page.name, node.url), page_index=0)
                if page.page_count > 1:
                    state.current_leaf = TreeLeaf(
                        category_url=node.url,
                        category=page.name,
                        path=path,
                        next_page_index=1,
                        page_count=page.page_count
                    )

            yield PageDone(checkpoint=state.model_copy(deep=True), page_index=0, pages_used=budget.used)
            await self.pause(delay_ms)

        done = state.current_leaf is None and not state.queue
        yield SliceFinished(done=done, pages_used=budget.used, checkpoint=None if done else state)

    def _tag_item(self, item: DiscoveredItem, category: Optional[str], category_url: str) -> DiscoveredItem:
        return item.model_copy(update={
            "source": self.slug,
            "category": item.category or category,
            "category_url": item.category_url or category_url,
        })


class JsonCategoryTreeDriver(CategoryTreeDriver):
    """
    Category tree served as JSON.

    Expected listing shape:
        {"name": "...", "children": ["url", ...], "items": [{...}], "page_count": 3}
    Item detail pages return a ScrapedItem-shaped object.
    """

    def __init__(
        self,
        slug: str,
        hosts,
        base_url: Optional[str] = None,
        page_param: str = "page",
        fetcher: Optional[HttpFetcher] = None,
        **kwargs
    ):
        super().__init__(slug, hosts, **kwargs)
        self.base_url = base_url
        self.page_param = page_param
        self.fetcher = fetcher or HttpFetcher(source=slug)

    async def fetch_listing(self, url: str, page_index: int) -> ListingPage:
        params: Dict[str, Any] = {self.page_param: page_index} if page_index else {}
        data = await self.fetcher.get_json(url, params=params)
        if not isinstance(data, dict):
            raise PageFetchError(
                f"Unexpected listing shape at {url}",
                context={"source": self.slug, "url": url}
            )
        children = data.get("children") or []
        records = data.get("items") or []
        if not isinstance(children, list) or not isinstance(records, list):
            raise PageFetchError(
                f"Unexpected listing shape at {url}",
                context={"source": self.slug, "url": url}
            )
        try:
            page_count = int(data.get("page_count") or 1)
        except (TypeError, ValueError) as e:
            raise PageFetchError(
                f"Invalid page_count at {url}: {data.get('page_count')!r}",
                context={"source": self.slug, "url": url},
                original_exception=e
            )
        name = data.get("name")
        return ListingPage(
            name=name if isinstance(name, str) else None,
            children=[c for c in children if isinstance(c, str)],
            items=[parse_record(DiscoveredItem, raw, self.slug, url) for raw in records if isinstance(raw, dict) and raw.get("url")],
            page_count=page_count,
        )

    async def scrape_item(self, identity: str) -> Optional[ScrapedItem]:
        try:
            data = await self.fetcher.get_json(identity)
        except ResourceNotFoundError:
            return None
        if not isinstance(data, dict):
            return None
        return parse_record(ScrapedItem, data, self.slug, identity)

    async def close(self) -> None:
        await self.fetcher.close()
