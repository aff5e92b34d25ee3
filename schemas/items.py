"""
Pydantic models for what drivers hand back: discovered identities and scraped detail.

These are ephemeral. The upsert engine turns them into durable records.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class PriceEntry(BaseModel):
    """One observation appended to a source item's price history"""
    recorded_at: datetime = Field(default_factory=datetime.utcnow)
    amount: float
    currency: Optional[str] = None
    per_unit_amount: Optional[float] = None
    per_unit_quantity: Optional[float] = None
    per_unit_unit: Optional[str] = None


class DiscoveredItem(BaseModel):
    """Identity plus display attributes found while walking a catalog"""
    url: str
    natural_key: Optional[str] = None
    source: Optional[str] = None
    name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    category_url: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None


class ScrapedItem(BaseModel):
    """Full detail of one item page"""
    natural_key: Optional[str] = None
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    category_url: Optional[str] = None
    canonical_url: Optional[str] = None

    price: Optional[float] = None
    currency: Optional[str] = None
    per_unit_amount: Optional[float] = None
    per_unit_quantity: Optional[float] = None
    per_unit_unit: Optional[str] = None

    rating: Optional[float] = None
    rating_count: Optional[int] = None
    images: List[str] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


class DiscoveredCategory(BaseModel):
    url: str
    name: Optional[str] = None
    path: List[str] = Field(default_factory=list)
    source: Optional[str] = None


class DiscoveredVocabularyEntry(BaseModel):
    name: str
    source: Optional[str] = None
    external_id: Optional[str] = None
    cas_number: Optional[str] = None
    ec_number: Optional[str] = None
    description: Optional[str] = None
    functions: List[str] = Field(default_factory=list)
    restrictions: Optional[str] = None
    source_url: Optional[str] = None


class DiscoveredMedia(BaseModel):
    external_id: str
    url: str
    source: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    published_at: Optional[datetime] = None
    duration: Optional[int] = None
    view_count: Optional[int] = None
    channel_name: Optional[str] = None
    channel_url: Optional[str] = None


class AggregatedData(BaseModel):
    """Merged view of one natural key across sources"""
    natural_key: str
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    lowest_price: Optional[float] = None
    currency: Optional[str] = None
    sources: List[str] = Field(default_factory=list)
    source_item_ids: List[int] = Field(default_factory=list)
