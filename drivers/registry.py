"""
Ordered driver registry.

Drivers are held as (DriverKind, driver) pairs in registration order and a
URL is routed to the first driver whose hosts match it.
"""

from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from core.config import DriverConfig
from core.exceptions import NoDriverError
from drivers.base import DriverKind, SourceDriver
from drivers.category_tree import JsonCategoryTreeDriver
from drivers.media_feed import MediaFeedDriver
from drivers.paged_api import PagedApiDriver
from drivers.term_search import JsonTermSearchDriver
import logging

logger = logging.getLogger(__name__)


class DriverRegistry:
    """First registered match wins."""

    def __init__(self, drivers: Optional[Iterable[SourceDriver]] = None):
        self._entries: List[Tuple[DriverKind, SourceDriver]] = []
        for driver in drivers or []:
            self.register(driver)

    def register(self, driver: SourceDriver) -> None:
        if self.get(driver.slug) is not None:
            raise ValueError(f"Driver slug already registered: {driver.slug}")
        self._entries.append((driver.kind, driver))
        logger.debug(f"Registered {driver.kind.value} driver '{driver.slug}' for {driver.hosts}")

    def __iter__(self) -> Iterator[SourceDriver]:
        return (driver for _, driver in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[Tuple[DriverKind, SourceDriver]]:
        return list(self._entries)

    def resolve(self, url: str) -> Optional[SourceDriver]:
        for _, driver in self._entries:
            if driver.matches(url):
                return driver
        return None

    def require(self, url: str) -> SourceDriver:
        driver = self.resolve(url)
        if driver is None:
            raise NoDriverError(
                f"No driver matches {url}",
                context={"url": url, "registered": self.slugs()}
            )
        return driver

    def get(self, slug: str) -> Optional[SourceDriver]:
        for _, driver in self._entries:
            if driver.slug == slug:
                return driver
        return None

    def source_slug_for(self, url: str) -> Optional[str]:
        driver = self.resolve(url)
        return driver.slug if driver else None

    def searchable(self) -> List[SourceDriver]:
        return [driver for _, driver in self._entries if driver.supports_search]

    def slugs(self) -> List[str]:
        return [driver.slug for _, driver in self._entries]

    async def aclose(self) -> None:
        for _, driver in self._entries:
            await driver.close()


def _category_tree(config: DriverConfig) -> SourceDriver:
    return JsonCategoryTreeDriver(config.slug, config.hosts, base_url=config.base_url, **config.options)


def _paged_api(config: DriverConfig) -> SourceDriver:
    return PagedApiDriver(config.slug, config.hosts, **config.options)


def _term_search(config: DriverConfig) -> SourceDriver:
    options = dict(config.options)
    search_url = options.pop("search_url", None) or config.base_url
    if not search_url:
        raise ValueError(f"term_search driver '{config.slug}' needs base_url or options.search_url")
    return JsonTermSearchDriver(config.slug, config.hosts, search_url=search_url, **options)


def _media_feed(config: DriverConfig) -> SourceDriver:
    return MediaFeedDriver(config.slug, config.hosts, **config.options)


DRIVER_FACTORIES: Dict[DriverKind, Callable[[DriverConfig], SourceDriver]] = {
    DriverKind.CATEGORY_TREE: _category_tree,
    DriverKind.PAGED_API: _paged_api,
    DriverKind.TERM_SEARCH: _term_search,
    DriverKind.MEDIA_FEED: _media_feed,
}


def build_registry(configs: Iterable[DriverConfig]) -> DriverRegistry:
    """Instantiate configured drivers in order"""
    registry = DriverRegistry()
    for config in configs:
        try:
            kind = DriverKind(config.kind)
        except ValueError:
            raise ValueError(f"Unknown driver kind '{config.kind}' for source '{config.slug}'")
        registry.register(DRIVER_FACTORIES[kind](config))

    logger.info(f"Driver registry ready: {registry.slugs()}")
    return registry
