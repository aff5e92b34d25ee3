from sqlalchemy import Column, String, Integer, Float, DateTime, Text, Enum, Index, ForeignKey, BigInteger
from datetime import datetime
from models.base import Base, BigIntPK, JSONType, RecordStatus, MediaStatus


class SourceItem(Base):
    """
    One item as seen on one source (e.g. a product page on one shop).

    Identity:
    - (source, source_url) where source_url is the canonical URL
    - natural_key (e.g. a product code) resolves to the same row within a source

    price_history is append-only: every discovery or crawl that reports a
    price adds an entry, earlier entries are never rewritten.
    """
    __tablename__ = "source_items"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # Identity
    source = Column(String(50), nullable=False, index=True)
    source_url = Column(String(2048), nullable=False)
    natural_key = Column(String(64), nullable=True)

    status = Column(Enum(RecordStatus, name="record_status"), default=RecordStatus.UNCRAWLED, nullable=False, index=True)

    # Attributes
    name = Column(String(500), nullable=True)
    brand = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String(500), nullable=True)
    category_url = Column(String(2048), nullable=True)
    rating = Column(Float, nullable=True)
    rating_count = Column(Integer, nullable=True)
    images = Column(JSONType, nullable=True)
    attributes = Column(JSONType, nullable=True)
    price_history = Column(JSONType, nullable=False, default=list)

    crawled_at = Column(DateTime, nullable=True, index=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_source_item_url", "source", "source_url", unique=True),
        Index("idx_source_item_natural_key", "source", "natural_key"),
        Index("idx_source_item_status", "source", "status"),
    )


class VocabularyEntry(Base):
    """A named vocabulary term (e.g. an ingredient) from a reference source"""
    __tablename__ = "vocabulary_entries"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    source = Column(String(50), nullable=False)
    name = Column(String(500), nullable=False)
    name_key = Column(String(500), nullable=False)

    external_id = Column(String(100), nullable=True)
    cas_number = Column(String(100), nullable=True)
    ec_number = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    functions = Column(JSONType, nullable=True)
    restrictions = Column(Text, nullable=True)
    source_url = Column(String(2048), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_vocabulary_name", "source", "name_key", unique=True),
    )


class Category(Base):
    """A node of a store's category tree"""
    __tablename__ = "categories"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    source = Column(String(50), nullable=False)
    url = Column(String(2048), nullable=False)
    name = Column(String(500), nullable=True)
    path = Column(JSONType, nullable=True)
    path_key = Column(String(2048), nullable=True)
    parent_id = Column(BigInteger, ForeignKey("categories.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_category_url", "source", "url", unique=True),
        Index("idx_category_path", "source", "path_key"),
    )


class MediaItem(Base):
    """A media entry (e.g. a video) listed by a channel"""
    __tablename__ = "media_items"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    source = Column(String(50), nullable=False)
    external_id = Column(String(255), nullable=False)
    url = Column(String(2048), nullable=False, index=True)

    title = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    thumbnail_url = Column(String(2048), nullable=True)
    channel_name = Column(String(255), nullable=True)
    channel_url = Column(String(2048), nullable=True)
    published_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)
    view_count = Column(Integer, nullable=True)

    processing_status = Column(Enum(MediaStatus, name="media_status"), default=MediaStatus.UNPROCESSED, nullable=False, index=True)
    segments = Column(JSONType, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_media_external", "source", "external_id", unique=True),
    )


class AggregatedRecord(Base):
    """Cross-source record merged from every source item sharing a natural key"""
    __tablename__ = "aggregated_records"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    natural_key = Column(String(64), nullable=False, unique=True)

    name = Column(String(500), nullable=True)
    brand = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String(500), nullable=True)
    attributes = Column(JSONType, nullable=True)
    lowest_price = Column(Float, nullable=True)
    currency = Column(String(10), nullable=True)

    source_item_ids = Column(JSONType, nullable=True)
    sources = Column(JSONType, nullable=True)
    aggregated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
