"""
Unit tests for the stateless worker
"""

import pytest
from core.exceptions import CircuitOpenError, NetworkError, PageFetchError
from drivers.registry import DriverRegistry
from schemas.items import DiscoveredItem
from schemas.work import (
    AggregationCursor, AggregationTarget, CatalogDiscoveryWork, CrawlTarget, ItemCrawlWork,
    MediaProcessingWork, RecordAggregationWork, SliceCursor,
)
from engine.worker import Worker
from fakes import StaticMediaProcessor, StaticPagedDriver


def item(host: str, n: int) -> DiscoveredItem:
    return DiscoveredItem(url=f"https://{host}/p/{n}")


class TestDiscover:
    @pytest.mark.asyncio
    async def test_partial_submission_after_every_page(self):
        driver = StaticPagedDriver("shop", ["shop.example"], pages={1: [item("shop.example", 1)], 2: [item("shop.example", 2)]})
        worker = Worker(DriverRegistry([driver]), worker_id="w1")
        partials = []

        work = CatalogDiscoveryWork(job_id=1, urls=["https://shop.example/catalog"], pages_per_tick=10)
        final = await worker.execute(work, on_partial=partials.append)

        assert [len(p.results) for p in partials] == [1, 1]
        assert all(p.final is False and p.done is False for p in partials)
        assert partials[0].checkpoint == SliceCursor(url_index=0, driver={"kind": "paged", "next_page": 2, "consecutive_failures": 0})
        assert final.final is True
        assert final.done is True
        assert final.results == []
        assert final.checkpoint is None
        assert final.worker_id == "w1"

    @pytest.mark.asyncio
    async def test_budget_is_shared_across_root_urls(self):
        shop = StaticPagedDriver("shop", ["shop.example"], pages={1: [item("shop.example", 1)], 2: [item("shop.example", 2)]})
        market = StaticPagedDriver("market", ["market.example"], pages={1: [item("market.example", 1)], 2: [item("market.example", 2)]})
        worker = Worker(DriverRegistry([shop, market]))

        work = CatalogDiscoveryWork(
            job_id=1,
            urls=["https://shop.example/catalog", "https://market.example/catalog"],
            pages_per_tick=3
        )
        submission = await worker.execute(work)

        assert [i.url for i in submission.results] == [
            "https://shop.example/p/1", "https://shop.example/p/2", "https://market.example/p/1"
        ]
        assert submission.done is False
        assert submission.checkpoint.url_index == 1
        assert submission.checkpoint.driver["next_page"] == 2

    @pytest.mark.asyncio
    async def test_resumes_from_cursor(self):
        shop = StaticPagedDriver("shop", ["shop.example"], pages={1: [item("shop.example", 1)]})
        market = StaticPagedDriver("market", ["market.example"], pages={1: [item("market.example", 1)], 2: [item("market.example", 2)]})
        worker = Worker(DriverRegistry([shop, market]))

        work = CatalogDiscoveryWork(
            job_id=1,
            urls=["https://shop.example/catalog", "https://market.example/catalog"],
            cursor=SliceCursor(url_index=1, driver={"kind": "paged", "next_page": 2}),
        )
        submission = await worker.execute(work)

        assert shop.fetched == []
        assert [i.url for i in submission.results] == ["https://market.example/p/2"]
        assert submission.done is True

    @pytest.mark.asyncio
    async def test_page_errors_are_reported(self):
        driver = StaticPagedDriver("shop", ["shop.example"], pages={1: PageFetchError("bad page"), 2: [item("shop.example", 2)]})
        worker = Worker(DriverRegistry([driver]))

        submission = await worker.execute(CatalogDiscoveryWork(job_id=1, urls=["https://shop.example/catalog"]))

        assert [(e.page_index, e.error) for e in submission.page_errors] == [(1, "bad page")]
        assert len(submission.results) == 1


class TestCrawl:
    @pytest.mark.asyncio
    async def test_scrape_outcomes(self, shop_details):
        details = dict(shop_details)
        details["https://shop.example/p/2"] = PageFetchError("bad markup")
        details["https://shop.example/p/3"] = None
        driver = StaticPagedDriver("shop", ["shop.example"], details=details)
        worker = Worker(DriverRegistry([driver]))

        work = ItemCrawlWork(job_id=1, targets=[
            CrawlTarget(url="https://shop.example/p/1", source="shop"),
            CrawlTarget(url="https://shop.example/p/2", source="shop"),
            CrawlTarget(url="https://shop.example/p/3", source="shop"),
            CrawlTarget(url="https://elsewhere.test/p/4", source="gone"),
        ])
        submission = await worker.execute(work)
        results = {r.url: r for r in submission.results}

        assert results["https://shop.example/p/1"].data.name == "Face Cream 50ml"
        assert results["https://shop.example/p/2"].error == "bad markup"
        assert results["https://shop.example/p/3"].error == "Item not found"
        assert "No driver" in results["https://elsewhere.test/p/4"].error
        assert driver.scraped == ["https://shop.example/p/1", "https://shop.example/p/2", "https://shop.example/p/3"]

    @pytest.mark.asyncio
    async def test_unexpected_scrape_error_is_an_item_error(self, shop_details):
        details = dict(shop_details)
        details["https://shop.example/p/1"] = KeyError("price")
        driver = StaticPagedDriver("shop", ["shop.example"], details=details)
        worker = Worker(DriverRegistry([driver]))

        work = ItemCrawlWork(job_id=1, targets=[
            CrawlTarget(url="https://shop.example/p/1", source="shop"),
            CrawlTarget(url="https://shop.example/p/2", source="shop"),
        ])
        submission = await worker.execute(work)

        assert [r.url for r in submission.results] == ["https://shop.example/p/1", "https://shop.example/p/2"]
        assert submission.results[0].error == "KeyError: 'price'"
        assert submission.results[1].data.name == "Shampoo 250ml"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [NetworkError("timeout"), CircuitOpenError("circuit open")])
    async def test_unavailable_source_ends_batch(self, shop_details, error):
        details = dict(shop_details)
        details["https://shop.example/p/2"] = error
        driver = StaticPagedDriver("shop", ["shop.example"], details=details)
        worker = Worker(DriverRegistry([driver]))

        work = ItemCrawlWork(job_id=1, targets=[
            CrawlTarget(url="https://shop.example/p/1", source="shop"),
            CrawlTarget(url="https://shop.example/p/2", source="shop"),
            CrawlTarget(url="https://shop.example/p/3", source="shop"),
        ])
        submission = await worker.execute(work)

        # Only the item scraped before the outage is submitted
        assert [r.url for r in submission.results] == ["https://shop.example/p/1"]
        assert submission.results[0].error is None
        assert driver.scraped == ["https://shop.example/p/1", "https://shop.example/p/2"]


class TestAggregate:
    @pytest.mark.asyncio
    async def test_searches_missing_sources(self):
        market = StaticPagedDriver("market", ["market.example"], search_results=[
            DiscoveredItem(url="https://market.example/p/77", natural_key="0001", name="Face Cream"),
            DiscoveredItem(url="https://market.example/p/78", natural_key="0009"),
        ])
        worker = Worker(DriverRegistry([market]))

        work = RecordAggregationWork(
            job_id=3,
            targets=[
                AggregationTarget(natural_key="0001", missing_sources=["market"]),
                AggregationTarget(natural_key="0002", missing_sources=["gone"]),
            ],
            cursor=AggregationCursor(last_checked_id=12),
        )
        submission = await worker.execute(work)
        results = {r.natural_key: r for r in submission.results}

        assert [m.url for m in results["0001"].matches] == ["https://market.example/p/77"]
        assert results["0001"].matches[0].source == "market"
        assert results["0002"].matches == []
        assert results["0002"].search_errors[0].startswith("gone:")
        assert submission.checkpoint.last_checked_id == 12


class TestProcessMedia:
    @pytest.mark.asyncio
    async def test_processor_results_and_failures(self):
        processor = StaticMediaProcessor(tokens_used=12)
        worker = Worker(DriverRegistry(), media_processor=processor)

        submission = await worker.execute(MediaProcessingWork(job_id=4, urls=["https://media.example/watch/1"]))

        assert submission.results[0].tokens_used == 12
        assert submission.results[0].segments[0]["label"] == "intro"

        failing = Worker(DriverRegistry(), media_processor=StaticMediaProcessor(error=RuntimeError("decoder crashed")))
        submission = await failing.execute(MediaProcessingWork(job_id=4, urls=["https://media.example/watch/1"]))
        assert submission.results[0].error == "decoder crashed"

    @pytest.mark.asyncio
    async def test_without_processor_every_item_errors(self):
        worker = Worker(DriverRegistry())

        submission = await worker.execute(MediaProcessingWork(job_id=4, urls=["https://media.example/watch/1"]))

        assert submission.results[0].error == "No media processor configured"
