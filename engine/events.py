"""
Per-job event log: every event is written to the events table and echoed
to the module logger.
"""

from typing import Any, Dict, Optional
from engine.store import RecordStore
from models.base import EventType, JobKind
from models.event import Event
import logging

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "debug": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

EVENT_LEVELS = {
    EventType.START: "info",
    EventType.SUCCESS: "info",
    EventType.INFO: "info",
    EventType.WARNING: "warning",
    EventType.ERROR: "error",
}


class JobEventLog:
    def __init__(self, store: RecordStore, job_kind: JobKind, job_id: int):
        self.store = store
        self.job_kind = job_kind
        self.job_id = job_id

    async def emit(
        self,
        event_type: EventType,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        level: Optional[str] = None
    ) -> Event:
        """Add an event to the session; the caller's commit persists it."""
        level = level or EVENT_LEVELS[event_type]
        logger.log(
            LOG_LEVELS.get(level, logging.INFO),
            f"[{self.job_kind.value}#{self.job_id}] {message}"
        )
        return await self.store.create(
            Event,
            job_kind=self.job_kind,
            job_id=self.job_id,
            type=event_type,
            level=level,
            message=message,
            context=context
        )

    async def start(self, message: str, **context: Any) -> Event:
        return await self.emit(EventType.START, message, context or None)

    async def success(self, message: str, **context: Any) -> Event:
        return await self.emit(EventType.SUCCESS, message, context or None)

    async def info(self, message: str, **context: Any) -> Event:
        return await self.emit(EventType.INFO, message, context or None)

    async def warning(self, message: str, **context: Any) -> Event:
        return await self.emit(EventType.WARNING, message, context or None)

    async def error(self, message: str, **context: Any) -> Event:
        return await self.emit(EventType.ERROR, message, context or None)
