from sqlalchemy import BigInteger, Integer, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


# ============================================================================
# ENUMS
# ============================================================================

class JobKind(str, enum.Enum):
    """Kinds of long-running work, one job table each"""
    CATALOG_DISCOVERY = "catalog-discovery"
    ITEM_CRAWL = "item-crawl"
    VOCABULARY_DISCOVERY = "vocabulary-discovery"
    RECORD_AGGREGATION = "record-aggregation"
    MEDIA_DISCOVERY = "media-discovery"
    MEDIA_PROCESSING = "media-processing"
    CATEGORY_DISCOVERY = "category-discovery"


class JobStatus(str, enum.Enum):
    """Job lifecycle status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class EventType(str, enum.Enum):
    """Job event types"""
    START = "start"
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class RecordStatus(str, enum.Enum):
    """Crawl status of a source item"""
    UNCRAWLED = "uncrawled"
    CRAWLED = "crawled"
    FAILED = "failed"


class MediaStatus(str, enum.Enum):
    """Processing status of a media item"""
    UNPROCESSED = "unprocessed"
    PROCESSED = "processed"
    FAILED = "failed"


class CrawlScope(str, enum.Enum):
    ALL = "all"
    SELECTED_URLS = "selected_urls"
    FROM_DISCOVERY = "from_discovery"
    SELECTED_KEYS = "selected_keys"


class RefreshMode(str, enum.Enum):
    UNCRAWLED_ONLY = "uncrawled_only"
    RECRAWL = "recrawl"


class AggregationScope(str, enum.Enum):
    ALL = "all"
    SELECTED_KEYS = "selected_keys"


class MediaScope(str, enum.Enum):
    SINGLE = "single"
    SELECTED_URLS = "selected_urls"
    ALL_UNPROCESSED = "all_unprocessed"
