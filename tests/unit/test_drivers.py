"""
Unit tests for driver traversals: budgets, resume and page failures
"""

import pytest
from core.exceptions import CheckpointError, CircuitOpenError, NetworkError, PageFetchError, RateLimitError
from drivers.base import (
    DiscoveryMode, DiscoveryOptions, ItemFound, PageDone, PageFailed, SliceFinished, run_discovery,
)
from drivers.category_tree import ListingPage
from drivers.checkpoints import CategoryTreeCheckpoint, PagedCheckpoint, TermQueueCheckpoint
from drivers.media_feed import MediaFeedDriver
from drivers.paged_api import MAX_CONSECUTIVE_FAILURES
from schemas.items import DiscoveredCategory, DiscoveredItem
from fakes import StaticFeedFetcher, StaticPagedDriver, StaticTermDriver, StaticTreeDriver, drain

CATALOG_URL = "https://shop.example/catalog"


def item(n: int) -> DiscoveredItem:
    return DiscoveredItem(url=f"https://shop.example/p/{n}", name=f"Item {n}")


async def collect(driver, options):
    return [step async for step in driver.discover_items(options)]


class TestPagedApiDriver:
    @pytest.mark.asyncio
    async def test_budget_stops_slice_and_checkpoint_resumes(self):
        driver = StaticPagedDriver("shop", ["shop.example"], pages={1: [item(1)], 2: [item(2)], 3: [item(3)]})

        steps = await collect(driver, DiscoveryOptions(url=CATALOG_URL, max_pages=2))
        finished = steps[-1]

        assert isinstance(finished, SliceFinished)
        assert finished.done is False
        assert finished.pages_used == 2
        assert finished.checkpoint == PagedCheckpoint(next_page=3)
        assert [s.item.url for s in steps if isinstance(s, ItemFound)] == [
            "https://shop.example/p/1", "https://shop.example/p/2"
        ]

        resumed = await collect(driver, DiscoveryOptions(url=CATALOG_URL, checkpoint=finished.checkpoint.model_dump()))
        assert resumed[-1].done is True
        assert resumed[-1].checkpoint is None
        assert [s.item.url for s in resumed if isinstance(s, ItemFound)] == ["https://shop.example/p/3"]

    @pytest.mark.asyncio
    async def test_page_done_follows_every_page(self):
        driver = StaticPagedDriver("shop", ["shop.example"], pages={1: [item(1)], 2: [item(2)]})

        steps = await collect(driver, DiscoveryOptions(url=CATALOG_URL))
        kinds = [type(s).__name__ for s in steps]

        assert kinds == ["ItemFound", "PageDone", "ItemFound", "PageDone", "SliceFinished"]
        assert [s.pages_used for s in steps if isinstance(s, PageDone)] == [1, 2]

    @pytest.mark.asyncio
    async def test_failed_page_is_skipped(self):
        driver = StaticPagedDriver(
            "shop", ["shop.example"],
            pages={1: [item(1)], 2: PageFetchError("bad gateway"), 3: [item(3)]}
        )

        result = await run_discovery(driver, DiscoveryOptions(url=CATALOG_URL))

        assert result.done is True
        assert [i.url for i in result.items] == ["https://shop.example/p/1", "https://shop.example/p/3"]
        assert len(result.page_errors) == 1
        assert result.page_errors[0].page_index == 2

    @pytest.mark.asyncio
    async def test_consecutive_failures_end_traversal(self):
        pages = {n: PageFetchError("gone") for n in range(1, 10)}
        driver = StaticPagedDriver("shop", ["shop.example"], pages=pages)

        result = await run_discovery(driver, DiscoveryOptions(url=CATALOG_URL))

        assert result.done is True
        assert result.pages_used == MAX_CONSECUTIVE_FAILURES
        assert len(result.page_errors) == MAX_CONSECUTIVE_FAILURES

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        NetworkError("timeout"),
        RateLimitError("slow down", retry_after=30),
        CircuitOpenError("circuit open"),
    ])
    async def test_transient_failure_ends_slice_on_same_page(self, error):
        driver = StaticPagedDriver("shop", ["shop.example"], pages={1: [item(1)], 2: error, 3: [item(3)]})

        first = await run_discovery(driver, DiscoveryOptions(url=CATALOG_URL, max_pages=10))

        assert first.done is False
        assert first.page_errors == []
        assert first.checkpoint == PagedCheckpoint(next_page=2, consecutive_failures=0)
        assert [i.url for i in first.items] == ["https://shop.example/p/1"]

        driver.pages[2] = [item(2)]
        rest = await run_discovery(driver, DiscoveryOptions(url=CATALOG_URL, checkpoint=first.checkpoint.model_dump()))

        assert rest.done is True
        assert [i.url for i in rest.items] == ["https://shop.example/p/2", "https://shop.example/p/3"]

    @pytest.mark.asyncio
    async def test_foreign_checkpoint_is_rejected(self):
        driver = StaticPagedDriver("shop", ["shop.example"], pages={1: [item(1)]})

        with pytest.raises(CheckpointError):
            await collect(driver, DiscoveryOptions(url=CATALOG_URL, checkpoint={"kind": "offset", "offset": 3}))

    @pytest.mark.asyncio
    async def test_sliced_traversal_matches_single_run(self):
        pages = {n: [item(n * 10 + k) for k in range(3)] for n in range(1, 6)}
        pages[3] = PageFetchError("timeout")

        whole, _ = await drain(StaticPagedDriver("shop", ["shop.example"], pages=pages), CATALOG_URL)
        sliced, slices = await drain(StaticPagedDriver("shop", ["shop.example"], pages=pages), CATALOG_URL, max_pages=1)

        assert [i.url for i in sliced] == [i.url for i in whole]
        assert slices == 5


def tree_driver(listings, **kwargs):
    return StaticTreeDriver("store", ["store.example"], listings, **kwargs)


STORE_ROOT = "https://store.example"


def store_listings():
    return {
        STORE_ROOT: [ListingPage(name="All", children=["https://store.example/c/face", "https://store.example/c/hair/"])],
        "https://store.example/c/face": [
            ListingPage(name="Face", items=[DiscoveredItem(url="https://store.example/p/1")], page_count=2),
            ListingPage(name="Face", items=[DiscoveredItem(url="https://store.example/p/2")], page_count=2),
        ],
        "https://store.example/c/hair": [
            ListingPage(name="Hair", items=[DiscoveredItem(url="https://store.example/p/3")]),
        ],
    }


class TestCategoryTreeDriver:
    @pytest.mark.asyncio
    async def test_walks_tree_and_paginates_leaves(self):
        driver = tree_driver(store_listings())

        result = await run_discovery(driver, DiscoveryOptions(url=STORE_ROOT))

        assert result.done is True
        assert [i.url for i in result.items] == [
            "https://store.example/p/1", "https://store.example/p/2", "https://store.example/p/3"
        ]
        assert result.items[0].category == "Face"
        assert result.items[0].category_url == "https://store.example/c/face"
        assert result.items[0].source == "store"
        assert result.pages_used == 4

    @pytest.mark.asyncio
    async def test_resume_mid_leaf(self):
        driver = tree_driver(store_listings())

        first = await run_discovery(driver, DiscoveryOptions(url=STORE_ROOT, max_pages=2))

        assert first.done is False
        assert isinstance(first.checkpoint, CategoryTreeCheckpoint)
        assert first.checkpoint.current_leaf.category_url == "https://store.example/c/face"
        assert first.checkpoint.current_leaf.next_page_index == 1

        rest = await run_discovery(driver, DiscoveryOptions(url=STORE_ROOT, checkpoint=first.checkpoint.model_dump()))
        assert [i.url for i in first.items + rest.items] == [
            "https://store.example/p/1", "https://store.example/p/2", "https://store.example/p/3"
        ]

    @pytest.mark.asyncio
    async def test_failed_branch_is_skipped(self):
        listings = store_listings()
        listings["https://store.example/c/face"] = PageFetchError("500 from store")
        driver = tree_driver(listings)

        result = await run_discovery(driver, DiscoveryOptions(url=STORE_ROOT))

        assert result.done is True
        assert [e.url for e in result.page_errors] == ["https://store.example/c/face"]
        assert [i.url for i in result.items] == ["https://store.example/p/3"]

    @pytest.mark.asyncio
    async def test_transient_branch_failure_is_retried_next_slice(self):
        listings = store_listings()
        face = listings["https://store.example/c/face"]
        listings["https://store.example/c/face"] = NetworkError("503 from store")
        driver = tree_driver(listings)

        first = await run_discovery(driver, DiscoveryOptions(url=STORE_ROOT, max_pages=20))

        assert first.done is False
        assert first.page_errors == []
        assert [n.url for n in first.checkpoint.queue] == ["https://store.example/c/face", "https://store.example/c/hair"]
        assert "https://store.example/c/face" not in first.checkpoint.visited
        # The branch after the failing one is not touched this slice
        assert ("https://store.example/c/hair", 0) not in driver.fetched

        driver.listings["https://store.example/c/face"] = face
        rest = await run_discovery(driver, DiscoveryOptions(url=STORE_ROOT, checkpoint=first.checkpoint.model_dump()))

        assert rest.done is True
        assert [i.url for i in rest.items] == [
            "https://store.example/p/1", "https://store.example/p/2", "https://store.example/p/3"
        ]

    @pytest.mark.asyncio
    async def test_transient_leaf_page_failure_keeps_page_index(self):
        driver = tree_driver(store_listings())
        original = driver.fetch_listing

        async def flaky(url, page_index):
            if url == "https://store.example/c/face" and page_index == 1:
                raise CircuitOpenError("circuit open")
            return await original(url, page_index)

        driver.fetch_listing = flaky
        first = await run_discovery(driver, DiscoveryOptions(url=STORE_ROOT))

        assert first.done is False
        assert first.checkpoint.current_leaf.next_page_index == 1
        assert [i.url for i in first.items] == ["https://store.example/p/1"]

        driver.fetch_listing = original
        rest = await run_discovery(driver, DiscoveryOptions(url=STORE_ROOT, checkpoint=first.checkpoint.model_dump()))

        assert rest.done is True
        assert [i.url for i in rest.items] == ["https://store.example/p/2", "https://store.example/p/3"]

    @pytest.mark.asyncio
    async def test_category_mode_reports_paths(self):
        driver = tree_driver(store_listings())

        result = await run_discovery(
            driver, DiscoveryOptions(url=STORE_ROOT, mode=DiscoveryMode.CATEGORIES)
        )

        assert all(isinstance(c, DiscoveredCategory) for c in result.items)
        assert [(c.name, c.path) for c in result.items] == [
            ("All", ["All"]),
            ("Face", ["All", "Face"]),
            ("Hair", ["All", "Hair"]),
        ]
        # Leaf pagination is not followed when only categories are wanted
        assert ("https://store.example/c/face", 1) not in driver.fetched

    @pytest.mark.asyncio
    async def test_cycles_are_visited_once(self):
        listings = store_listings()
        listings["https://store.example/c/hair"] = [ListingPage(name="Hair", children=[STORE_ROOT + "/"])]
        driver = tree_driver(listings)

        result = await run_discovery(driver, DiscoveryOptions(url=STORE_ROOT))

        assert result.done is True
        assert [url for url, _ in driver.fetched].count(STORE_ROOT) == 1


class TestTermSearchDriver:
    NAMES = ["Aloe", "Almond Oil", "Argan Oil", "Beeswax", "Biotin"]

    @pytest.mark.asyncio
    async def test_enumerates_every_term(self):
        driver = StaticTermDriver("vocab", ["vocab.example"], self.NAMES, terms=["a", "b", "c"], page_size=2)

        result = await run_discovery(driver, DiscoveryOptions(url="https://vocab.example/search"))

        assert result.done is True
        assert sorted(e.name for e in result.items) == sorted(self.NAMES)
        assert all(e.source == "vocab" for e in result.items)

    @pytest.mark.asyncio
    async def test_oversized_term_is_split(self):
        driver = StaticTermDriver(
            "vocab", ["vocab.example"], self.NAMES, terms=["a", "b"],
            page_size=1, max_pages_per_term=2
        )

        result = await run_discovery(driver, DiscoveryOptions(url="https://vocab.example/search"))

        # "a" has 3 results (3 pages > 2) so it is replaced by "aa".."az"
        assert "al" in driver.checked
        assert "ar" in driver.checked
        assert driver.checked.index("az") < driver.checked.index("b")
        assert sorted(e.name for e in result.items) == sorted(self.NAMES)

    @pytest.mark.asyncio
    async def test_checkpoint_holds_term_position(self):
        driver = StaticTermDriver("vocab", ["vocab.example"], self.NAMES, terms=["a", "b"], page_size=1)

        result = await run_discovery(driver, DiscoveryOptions(url="https://vocab.example/search", max_pages=2))

        assert result.done is False
        assert result.checkpoint == TermQueueCheckpoint(
            current_term="a", current_page=2, total_pages_for_term=3, term_queue=["b"]
        )

    @pytest.mark.asyncio
    async def test_failed_term_check_is_skipped(self):
        driver = StaticTermDriver(
            "vocab", ["vocab.example"], self.NAMES, terms=["a", "b"],
            failing_terms={"a": PageFetchError("no total")}
        )

        result = await run_discovery(driver, DiscoveryOptions(url="https://vocab.example/search"))

        assert result.done is True
        assert len(result.page_errors) == 1
        assert sorted(e.name for e in result.items) == ["Beeswax", "Biotin"]

    @pytest.mark.asyncio
    async def test_transient_term_check_is_retried_next_slice(self):
        driver = StaticTermDriver(
            "vocab", ["vocab.example"], self.NAMES, terms=["a", "b"],
            failing_terms={"b": NetworkError("timeout")}
        )

        first = await run_discovery(driver, DiscoveryOptions(url="https://vocab.example/search"))

        assert first.done is False
        assert first.page_errors == []
        assert first.checkpoint.term_queue == ["b"]
        assert first.checkpoint.current_term is None

        driver.failing_terms = {}
        rest = await run_discovery(
            driver, DiscoveryOptions(url="https://vocab.example/search", checkpoint=first.checkpoint.model_dump())
        )

        assert rest.done is True
        assert sorted(e.name for e in first.items + rest.items) == sorted(self.NAMES)

    @pytest.mark.asyncio
    async def test_sliced_traversal_matches_single_run(self):
        whole, _ = await drain(
            StaticTermDriver("vocab", ["vocab.example"], self.NAMES, terms=["a", "b"], page_size=1, max_pages_per_term=2),
            "https://vocab.example/search"
        )
        sliced, _ = await drain(
            StaticTermDriver("vocab", ["vocab.example"], self.NAMES, terms=["a", "b"], page_size=1, max_pages_per_term=2),
            "https://vocab.example/search", max_pages=3
        )
        assert [e.name for e in sliced] == [e.name for e in whole]


FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Skincare Channel</title>
    <link>https://media.example/channel/skin</link>
    <item>
      <guid>vid-1</guid>
      <title>Morning routine</title>
      <link>https://media.example/watch/1</link>
      <pubDate>Mon, 06 Jan 2025 10:00:00 GMT</pubDate>
    </item>
    <item>
      <guid>vid-2</guid>
      <title>Night routine</title>
      <link>https://media.example/watch/2</link>
    </item>
    <item>
      <guid>vid-3</guid>
      <title>Sunscreen myths</title>
      <link>https://media.example/watch/3</link>
    </item>
  </channel>
</rss>
"""


class TestMediaFeedDriver:
    @pytest.mark.asyncio
    async def test_batches_entries_by_offset(self):
        driver = MediaFeedDriver("media", ["media.example"], page_size=2, fetcher=StaticFeedFetcher(FEED))

        first = await run_discovery(driver, DiscoveryOptions(url="https://media.example/feed", max_pages=1))

        assert first.done is False
        assert first.checkpoint.offset == 2
        assert first.checkpoint.total == 3
        assert [m.external_id for m in first.items] == ["vid-1", "vid-2"]
        assert first.items[0].channel_name == "Skincare Channel"
        assert first.items[0].published_at is not None

        rest = await run_discovery(
            driver, DiscoveryOptions(url="https://media.example/feed", checkpoint=first.checkpoint.model_dump())
        )
        assert rest.done is True
        assert [m.external_id for m in rest.items] == ["vid-3"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [NetworkError("timeout"), CircuitOpenError("circuit open")])
    async def test_transient_failure_keeps_offset(self, error):
        fetcher = StaticFeedFetcher(error=error)
        driver = MediaFeedDriver("media", ["media.example"], fetcher=fetcher)

        steps = await collect(driver, DiscoveryOptions(url="https://media.example/feed", checkpoint={"kind": "offset", "offset": 25}))

        assert len(steps) == 1
        assert steps[-1].done is False
        assert steps[-1].checkpoint.offset == 25

    @pytest.mark.asyncio
    async def test_permanent_failure_finishes(self):
        driver = MediaFeedDriver("media", ["media.example"], fetcher=StaticFeedFetcher("not a feed at all <"))

        steps = await collect(driver, DiscoveryOptions(url="https://media.example/feed"))

        assert isinstance(steps[0], PageFailed)
        assert steps[-1].done is True
        assert steps[-1].checkpoint is None
