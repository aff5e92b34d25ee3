"""
Per-tick work caps.

A tick never measures wall-clock time. It is kept short by capping the
number of network pages (discovery kinds) or items (crawl-like kinds) it
may consume, checked before each unit of work.
"""

from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")


class PageBudget:
    """Counts pages against an optional cap; None means unlimited."""

    def __init__(self, max_pages: Optional[int] = None):
        if max_pages is not None and max_pages < 0:
            raise ValueError(f"max_pages must be >= 0, got {max_pages}")
        self.max_pages = max_pages
        self.used = 0

    @property
    def exhausted(self) -> bool:
        return self.max_pages is not None and self.used >= self.max_pages

    @property
    def remaining(self) -> Optional[int]:
        if self.max_pages is None:
            return None
        return max(0, self.max_pages - self.used)

    def consume(self, pages: int = 1) -> None:
        self.used += pages

    def __repr__(self) -> str:
        return f"PageBudget(used={self.used}, max_pages={self.max_pages})"


class ItemBudget:
    """Caps how many items one tick takes from its outstanding work."""

    def __init__(self, max_items: Optional[int] = None):
        if max_items is not None and max_items < 1:
            raise ValueError(f"max_items must be >= 1, got {max_items}")
        self.max_items = max_items

    def take(self, items: Sequence[T]) -> List[T]:
        if self.max_items is None:
            return list(items)
        return list(items[:self.max_items])


def remaining_pages(total: Optional[int], used: int) -> Optional[int]:
    """Pages left for the next driver sharing one tick's budget."""
    if total is None:
        return None
    return max(0, total - used)
