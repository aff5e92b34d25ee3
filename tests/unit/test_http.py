"""
Unit tests for the driver HTTP fetcher (retries, typed errors, circuit breaker)
"""

import httpx
import pytest
from core.exceptions import (
    AuthenticationError, CircuitOpenError, NetworkError, PageFetchError,
    RateLimitError, ResourceNotFoundError,
)
from drivers.base import DiscoveryOptions, run_discovery
from drivers.category_tree import JsonCategoryTreeDriver
from drivers.http import HttpFetcher
from drivers.paged_api import PagedApiDriver
from drivers.term_search import JsonTermSearchDriver


def make_fetcher(handler, **kwargs) -> HttpFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpFetcher(source="shop", client=client, max_retries=3, retry_delay=0, **kwargs)


class TestHttpFetcher:
    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            if len(calls) < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"ok": True})

        fetcher = make_fetcher(handler)
        assert await fetcher.get_json("https://shop.example/api") == {"ok": True}
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_persistent_server_error_raises_network_error(self):
        fetcher = make_fetcher(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(NetworkError) as exc_info:
            await fetcher.get("https://shop.example/api")
        assert exc_info.value.context["status_code"] == 500

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried_then_raised(self):
        calls = []

        def handler(request):
            calls.append(1)
            raise httpx.ConnectError("Connection refused", request=request)

        fetcher = make_fetcher(handler)
        with pytest.raises(NetworkError):
            await fetcher.get("https://shop.example/api")
        assert len(calls) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (404, ResourceNotFoundError),
        (410, PageFetchError),
    ])
    async def test_client_errors_are_typed_and_not_retried(self, status, error):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(status)

        fetcher = make_fetcher(handler)
        with pytest.raises(error):
            await fetcher.get("https://shop.example/api")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self):
        fetcher = make_fetcher(lambda request: httpx.Response(429, headers={"Retry-After": "0"}))

        with pytest.raises(RateLimitError) as exc_info:
            await fetcher.get("https://shop.example/api")
        assert exc_info.value.retry_after == 0

    @pytest.mark.asyncio
    async def test_invalid_json_is_a_page_error(self):
        fetcher = make_fetcher(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(PageFetchError):
            await fetcher.get_json("https://shop.example/api")

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self):
        fetcher = make_fetcher(lambda request: httpx.Response(500), circuit_breaker_threshold=2)

        for _ in range(2):
            with pytest.raises(NetworkError):
                await fetcher.get("https://shop.example/api")

        with pytest.raises(CircuitOpenError):
            await fetcher.get("https://shop.example/api")


class TestPagedApiOverHttp:
    @pytest.mark.asyncio
    async def test_reads_pages_until_has_next_is_false(self):
        def handler(request):
            page = int(request.url.params["page"])
            records = [{"url": f"https://shop.example/p/{page}", "name": f"Item {page}", "natural_key": f"{page:04d}"}]
            return httpx.Response(200, json={"data": records, "has_next": page < 2})

        driver = PagedApiDriver("shop", ["shop.example"], fetcher=make_fetcher(handler))
        result = await run_discovery(driver, DiscoveryOptions(url="https://shop.example/api/products"))

        assert result.done is True
        assert [i.natural_key for i in result.items] == ["0001", "0002"]
        assert all(i.source == "shop" for i in result.items)

    @pytest.mark.asyncio
    async def test_missing_item_scrapes_as_none(self):
        driver = PagedApiDriver("shop", ["shop.example"], fetcher=make_fetcher(lambda request: httpx.Response(404)))

        assert await driver.scrape_item("https://shop.example/api/products/9") is None

    @pytest.mark.asyncio
    async def test_malformed_record_fails_only_its_page(self):
        def handler(request):
            page = int(request.url.params["page"])
            if page == 1:
                records = [{"url": "https://shop.example/p/1", "price": "n/a"}]
            else:
                records = [{"url": "https://shop.example/p/2", "price": 4.5}]
            return httpx.Response(200, json={"data": records, "has_next": page < 2})

        driver = PagedApiDriver("shop", ["shop.example"], fetcher=make_fetcher(handler))
        result = await run_discovery(driver, DiscoveryOptions(url="https://shop.example/api/products"))

        assert result.done is True
        assert [i.url for i in result.items] == ["https://shop.example/p/2"]
        assert [e.page_index for e in result.page_errors] == [1]
        assert "Malformed DiscoveredItem" in result.page_errors[0].error

    @pytest.mark.asyncio
    async def test_malformed_detail_raises_page_error(self):
        driver = PagedApiDriver(
            "shop", ["shop.example"],
            fetcher=make_fetcher(lambda request: httpx.Response(200, json={"name": "Serum", "price": "n/a"}))
        )

        with pytest.raises(PageFetchError) as exc_info:
            await driver.scrape_item("https://shop.example/api/products/1")
        assert exc_info.value.context["url"] == "https://shop.example/api/products/1"


class TestCategoryTreeOverHttp:
    ROOT = "https://store.example/c"

    @pytest.mark.asyncio
    async def test_unavailable_branches_stay_queued(self):
        children = [f"{self.ROOT}/{n}" for n in range(8)]
        source = {"down": True}
        requested = []

        def handler(request):
            url = str(request.url)
            requested.append(url)
            if url == self.ROOT:
                return httpx.Response(200, json={"name": "All", "children": children})
            if source["down"]:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"name": url.rsplit("/", 1)[-1], "items": [{"url": f"{url}/item"}]})

        driver = JsonCategoryTreeDriver("store", ["store.example"], fetcher=make_fetcher(handler))
        first = await run_discovery(driver, DiscoveryOptions(url=self.ROOT, max_pages=20))

        assert first.done is False
        assert first.page_errors == []
        assert [n.url for n in first.checkpoint.queue] == children
        assert requested.count(children[0]) == 3
        assert not any(url in requested for url in children[1:])

        source["down"] = False
        rest = await run_discovery(driver, DiscoveryOptions(url=self.ROOT, checkpoint=first.checkpoint.model_dump()))

        assert rest.done is True
        assert [i.url for i in rest.items] == [f"{url}/item" for url in children]

    @pytest.mark.asyncio
    async def test_malformed_listing_fails_only_that_branch(self):
        def handler(request):
            url = str(request.url)
            if url == self.ROOT:
                return httpx.Response(200, json={"name": "All", "children": [f"{self.ROOT}/bad", f"{self.ROOT}/good"]})
            if url.endswith("/bad"):
                return httpx.Response(200, json={"name": "Bad", "items": [{"url": f"{url}/item"}], "page_count": "many"})
            return httpx.Response(200, json={"name": "Good", "items": [{"url": f"{url}/item"}]})

        driver = JsonCategoryTreeDriver("store", ["store.example"], fetcher=make_fetcher(handler))
        result = await run_discovery(driver, DiscoveryOptions(url=self.ROOT))

        assert result.done is True
        assert [e.url for e in result.page_errors] == [f"{self.ROOT}/bad"]
        assert [i.url for i in result.items] == [f"{self.ROOT}/good/item"]


class TestTermSearchOverHttp:
    @pytest.mark.asyncio
    async def test_invalid_total_fails_only_that_term(self):
        def handler(request):
            term = request.url.params["q"]
            if term == "a":
                return httpx.Response(200, json={"total": "lots", "items": []})
            if term == "b":
                return httpx.Response(200, json={"total": 1, "items": [{"name": "Beeswax"}]})
            return httpx.Response(200, json={"total": 0, "items": []})

        driver = JsonTermSearchDriver(
            "vocab", ["vocab.example"], search_url="https://vocab.example/search", fetcher=make_fetcher(handler)
        )
        result = await run_discovery(driver, DiscoveryOptions(url="https://vocab.example/search"))

        assert result.done is True
        assert len(result.page_errors) == 1
        assert "invalid total" in result.page_errors[0].error
        assert [e.name for e in result.items] == ["Beeswax"]
