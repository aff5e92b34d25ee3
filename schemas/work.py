"""
Work units and submissions exchanged between the coordinator and workers.

A work unit is everything a stateless worker needs to run one tick of one
job. A submission is what it sends back:

    {job_id, results[], checkpoint, done}

plus `page_errors` for discovery kinds. Both are discriminated by `kind`,
so one endpoint can validate any of them.
"""

from pydantic import BaseModel, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from schemas.items import (
    DiscoveredCategory, DiscoveredItem, DiscoveredMedia,
    DiscoveredVocabularyEntry, ScrapedItem,
)


# ============================================================================
# Shared pieces
# ============================================================================

class SliceCursor(BaseModel):
    """Which of a job's root URLs is being walked, and the driver's checkpoint for it"""
    url_index: int = 0
    driver: Optional[Dict[str, Any]] = None


class AggregationCursor(BaseModel):
    last_checked_id: int = 0


class PageError(BaseModel):
    url: str
    error: str
    page_index: int = 0


class DiscoveryWorkBase(BaseModel):
    job_id: int
    urls: List[str]
    cursor: SliceCursor = Field(default_factory=SliceCursor)
    pages_per_tick: Optional[int] = None
    delay_ms: int = 0


class SubmissionBase(BaseModel):
    job_id: int
    worker_id: Optional[str] = None
    done: bool = False
    final: bool = Field(True, description="False for the incremental submissions sent after each page")


class DiscoverySubmissionBase(SubmissionBase):
    checkpoint: Optional[SliceCursor] = None
    page_errors: List[PageError] = Field(default_factory=list)


# ============================================================================
# Work units
# ============================================================================

class CatalogDiscoveryWork(DiscoveryWorkBase):
    kind: Literal["catalog-discovery"] = "catalog-discovery"


class CategoryDiscoveryWork(DiscoveryWorkBase):
    kind: Literal["category-discovery"] = "category-discovery"


class VocabularyDiscoveryWork(DiscoveryWorkBase):
    kind: Literal["vocabulary-discovery"] = "vocabulary-discovery"


class MediaDiscoveryWork(DiscoveryWorkBase):
    kind: Literal["media-discovery"] = "media-discovery"


class CrawlTarget(BaseModel):
    url: str
    source: str


class ItemCrawlWork(BaseModel):
    kind: Literal["item-crawl"] = "item-crawl"
    job_id: int
    targets: List[CrawlTarget]
    delay_ms: int = 0


class AggregationTarget(BaseModel):
    natural_key: str
    name: Optional[str] = None
    missing_sources: List[str] = Field(default_factory=list)


class RecordAggregationWork(BaseModel):
    kind: Literal["record-aggregation"] = "record-aggregation"
    job_id: int
    targets: List[AggregationTarget]
    cursor: Optional[AggregationCursor] = None
    max_search_results: int = 20


class MediaProcessingWork(BaseModel):
    kind: Literal["media-processing"] = "media-processing"
    job_id: int
    urls: List[str]
    options: Dict[str, Any] = Field(default_factory=dict)


WorkUnit = Annotated[
    Union[
        CatalogDiscoveryWork,
        ItemCrawlWork,
        VocabularyDiscoveryWork,
        RecordAggregationWork,
        MediaDiscoveryWork,
        MediaProcessingWork,
        CategoryDiscoveryWork,
    ],
    Field(discriminator="kind"),
]


# ============================================================================
# Submissions
# ============================================================================

class CatalogDiscoverySubmission(DiscoverySubmissionBase):
    kind: Literal["catalog-discovery"] = "catalog-discovery"
    results: List[DiscoveredItem] = Field(default_factory=list)


class CategoryDiscoverySubmission(DiscoverySubmissionBase):
    kind: Literal["category-discovery"] = "category-discovery"
    results: List[DiscoveredCategory] = Field(default_factory=list)


class VocabularyDiscoverySubmission(DiscoverySubmissionBase):
    kind: Literal["vocabulary-discovery"] = "vocabulary-discovery"
    results: List[DiscoveredVocabularyEntry] = Field(default_factory=list)


class MediaDiscoverySubmission(DiscoverySubmissionBase):
    kind: Literal["media-discovery"] = "media-discovery"
    results: List[DiscoveredMedia] = Field(default_factory=list)
    total: Optional[int] = None


class CrawlResult(BaseModel):
    url: str
    source: str
    data: Optional[ScrapedItem] = None
    error: Optional[str] = None


class ItemCrawlSubmission(SubmissionBase):
    kind: Literal["item-crawl"] = "item-crawl"
    results: List[CrawlResult] = Field(default_factory=list)
    checkpoint: Optional[Dict[str, Any]] = None


class AggregationResult(BaseModel):
    natural_key: str
    matches: List[DiscoveredItem] = Field(default_factory=list)
    search_errors: List[str] = Field(default_factory=list)


class RecordAggregationSubmission(SubmissionBase):
    kind: Literal["record-aggregation"] = "record-aggregation"
    results: List[AggregationResult] = Field(default_factory=list)
    checkpoint: Optional[AggregationCursor] = None


class MediaResult(BaseModel):
    url: str
    segments: List[Dict[str, Any]] = Field(default_factory=list)
    tokens_used: int = 0
    error: Optional[str] = None


class MediaProcessingSubmission(SubmissionBase):
    kind: Literal["media-processing"] = "media-processing"
    results: List[MediaResult] = Field(default_factory=list)
    checkpoint: Optional[Dict[str, Any]] = None


Submission = Annotated[
    Union[
        CatalogDiscoverySubmission,
        ItemCrawlSubmission,
        VocabularyDiscoverySubmission,
        RecordAggregationSubmission,
        MediaDiscoverySubmission,
        MediaProcessingSubmission,
        CategoryDiscoverySubmission,
    ],
    Field(discriminator="kind"),
]


# ============================================================================
# Responses
# ============================================================================

class SubmitSummary(BaseModel):
    """Outcome of applying one submission"""
    job_id: int
    kind: str
    status: str
    counts: Dict[str, int] = Field(default_factory=dict, description="Counter changes made by this call")
    totals: Dict[str, int] = Field(default_factory=dict)
    done: bool = False
    remaining: Optional[int] = None


class ClaimResponse(BaseModel):
    """Answer to a remote worker asking for work"""
    status: str = Field(..., description="claimed, idle, busy, completed or failed")
    message: Optional[str] = None
    work: Optional[WorkUnit] = None
