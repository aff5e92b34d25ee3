import logging
import random
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import settings
from core.database import async_session_maker
from drivers.registry import DriverRegistry
from engine.coordinator import JobCoordinator
from engine.media import MediaProcessor
from engine.worker import Worker
from schemas.api import TickSummary

logger = logging.getLogger(__name__)


class EngineScheduler:
    """Fires one coordinator advance every TICK_INTERVAL_SECONDS"""

    def __init__(
        self,
        registry: DriverRegistry,
        session_maker: Optional[async_sessionmaker] = None,
        interval_seconds: Optional[int] = None,
        media_processor: Optional[MediaProcessor] = None,
        rng: Optional[random.Random] = None
    ):
        self.scheduler = AsyncIOScheduler()
        self.registry = registry
        self.SessionLocal = session_maker or async_session_maker
        self.interval_seconds = interval_seconds or settings.TICK_INTERVAL_SECONDS
        self.worker = Worker(registry, media_processor=media_processor)
        self.rng = rng or random.Random()

    async def run_tick(self) -> Optional[TickSummary]:
        """Job to advance one job"""
        async with self.SessionLocal() as session:
            try:
                coordinator = JobCoordinator(session, self.registry, rng=self.rng, worker=self.worker)
                summary = await coordinator.advance()
                logger.info(f"Scheduler: tick {summary.status} - {summary.message}")
                return summary
            except Exception as e:
                logger.error(f"Scheduler: tick failed - {e}")
                return None

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id="engine_tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"Engine scheduler started (every {self.interval_seconds}s)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Engine scheduler stopped")
