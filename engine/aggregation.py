"""
Merging source items that share a natural key into one aggregated record
"""

from typing import Any, Dict, List, Optional, Sequence
from pydantic import BaseModel, Field
from schemas.items import AggregatedData

MERGED_FIELDS = ("name", "brand", "description", "category")


class SourceSnapshot(BaseModel):
    """The parts of one source item aggregation looks at"""
    source: str
    source_item_id: Optional[int] = None
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    price: Optional[float] = None
    currency: Optional[str] = None


def _rank(source: str, priority: Sequence[str]) -> int:
    try:
        return list(priority).index(source)
    except ValueError:
        return len(priority)


def latest_price(price_history: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    if not price_history:
        return None
    return price_history[-1]


def aggregate_sources(
    natural_key: str,
    snapshots: Sequence[SourceSnapshot],
    priority: Sequence[str] = ()
) -> AggregatedData:
    """
    Merge snapshots of one natural key.

    Text fields come from the highest priority source that has them
    (sources missing from `priority` rank last, in the order given).
    Attribute dicts are layered so higher priority sources win per key.
    The lowest reported price is kept.
    """
    ordered = sorted(snapshots, key=lambda s: _rank(s.source, priority))

    merged: Dict[str, Any] = {}
    for field_name in MERGED_FIELDS:
        merged[field_name] = next(
            (getattr(s, field_name) for s in ordered if getattr(s, field_name)), None
        )

    attributes: Dict[str, Any] = {}
    for snapshot in reversed(ordered):
        attributes.update(snapshot.attributes)

    priced = [s for s in ordered if s.price is not None]
    cheapest = min(priced, key=lambda s: s.price) if priced else None

    sources: List[str] = []
    for snapshot in ordered:
        if snapshot.source not in sources:
            sources.append(snapshot.source)

    return AggregatedData(
        natural_key=natural_key,
        attributes=attributes,
        lowest_price=cheapest.price if cheapest else None,
        currency=cheapest.currency if cheapest else None,
        sources=sources,
        source_item_ids=[s.source_item_id for s in ordered if s.source_item_id is not None],
        **merged
    )
