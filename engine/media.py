"""
Seam for the external media processor.

Scene detection, hashing and recognition happen elsewhere; the engine only
hands over a media URL and stores the segments and token usage it gets back.
"""

from typing import Any, Dict, List, Optional, Protocol
from pydantic import BaseModel, Field


class MediaProcessingResult(BaseModel):
    segments: List[Dict[str, Any]] = Field(default_factory=list)
    tokens_used: int = 0


class MediaProcessor(Protocol):
    async def process(self, url: str, options: Optional[Dict[str, Any]] = None) -> MediaProcessingResult:
        ...
