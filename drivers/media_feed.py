"""
Channel media discovery from RSS/Atom feeds.

The feed is fetched once per slice and its entries are handed out in
batches of `page_size`, each batch counting as one page; the checkpoint is
the offset of the next unseen entry. A feed that cannot be fetched for a
transient reason leaves the offset alone for the next slice.
"""

import asyncio
import feedparser
from datetime import datetime
from typing import Any, AsyncIterator, List, Optional
from pydantic import ValidationError
from core.exceptions import DriverError, PageFetchError
from drivers.base import (
    TRANSIENT_DRIVER_ERRORS, DiscoveryOptions, DiscoveryStep, DriverKind,
    ItemFound, PageDone, PageFailed, SliceFinished, SourceDriver,
)
from drivers.checkpoints import OffsetCheckpoint, expect_checkpoint
from drivers.http import HttpFetcher
from engine.budget import PageBudget
from schemas.items import DiscoveredMedia
import logging

logger = logging.getLogger(__name__)


def _parse_time(entry: Any) -> Optional[datetime]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        return datetime(*parsed[:6])
    return None


def _thumbnail(entry: Any) -> Optional[str]:
    thumbnails = entry.get("media_thumbnail") or []
    if thumbnails and isinstance(thumbnails[0], dict):
        return thumbnails[0].get("url")
    return None


def entry_to_media(entry: Any, feed_info: Any, source: str) -> Optional[DiscoveredMedia]:
    link = entry.get("link")
    external_id = entry.get("yt_videoid") or entry.get("id") or link
    if not link or not external_id:
        return None

    views = None
    statistics = entry.get("media_statistics")
    if isinstance(statistics, dict) and statistics.get("views"):
        try:
            views = int(statistics["views"])
        except (TypeError, ValueError):
            views = None

    return DiscoveredMedia(
        external_id=str(external_id),
        url=link,
        source=source,
        title=entry.get("title"),
        description=entry.get("summary"),
        thumbnail_url=_thumbnail(entry),
        published_at=_parse_time(entry),
        view_count=views,
        channel_name=feed_info.get("title"),
        channel_url=feed_info.get("link"),
    )


class MediaFeedDriver(SourceDriver):
    """Lists a channel's media entries from its RSS/Atom feed"""

    kind = DriverKind.MEDIA_FEED

    def __init__(self, slug: str, hosts, page_size: int = 25, fetcher: Optional[HttpFetcher] = None, **kwargs):
        super().__init__(slug, hosts, **kwargs)
        self.page_size = page_size
        self.fetcher = fetcher or HttpFetcher(
            source=slug,
            headers={"Accept": "application/atom+xml, application/rss+xml, application/xml"}
        )

    async def fetch_entries(self, url: str) -> List[DiscoveredMedia]:
        content = await self.fetcher.get_text(url)

        # Parse in a worker thread; feedparser is synchronous
        feed = await asyncio.to_thread(feedparser.parse, content)
        if feed.bozo and not feed.entries:
            raise PageFetchError(
                f"Failed to parse feed: {feed.bozo_exception}",
                context={"source": self.slug, "url": url}
            )

        media = []
        for entry in feed.entries:
            try:
                item = entry_to_media(entry, feed.feed, self.slug)
            except ValidationError as e:
                logger.warning(f"[{self.slug}] skipping malformed entry {entry.get('link')!r} in {url}: {e.error_count()} error(s)")
                continue
            if item is not None:
                media.append(item)
        return media

    async def discover_items(self, options: DiscoveryOptions) -> AsyncIterator[DiscoveryStep]:
        state = expect_checkpoint(options.checkpoint, OffsetCheckpoint) or OffsetCheckpoint()
        budget = PageBudget(options.max_pages)

        try:
            entries = await self.fetch_entries(options.url)
        except TRANSIENT_DRIVER_ERRORS as e:
            logger.warning(f"[{self.slug}] feed {options.url} unavailable, retrying next slice: {e.message}")
            yield SliceFinished(done=False, pages_used=0, checkpoint=state)
            return
        except DriverError as e:
            logger.warning(f"[{self.slug}] feed {options.url} failed: {e.message}")
            yield PageFailed(url=options.url, error=e.message, page_index=state.offset // self.page_size)
            yield SliceFinished(done=True, pages_used=0, checkpoint=None)
            return

        state.total = len(entries)

        while not budget.exhausted and state.offset < len(entries):
            page_index = state.offset // self.page_size
            batch = entries[state.offset:state.offset + self.page_size]
            budget.consume()
            for item in batch:
                yield ItemFound(item=item, page_index=page_index)
            state.offset += len(batch)
            yield PageDone(checkpoint=state.model_copy(deep=True), page_index=page_index, pages_used=budget.used)

        done = state.offset >= len(entries)
        yield SliceFinished(done=done, pages_used=budget.used, checkpoint=None if done else state)

    async def close(self) -> None:
        await self.fetcher.close()
