"""
Job coordinator: advances exactly one job per trigger.

Each advance:
1. Collects candidates per kind (in_progress then pending, oldest first,
   live claims skipped)
2. Picks one: the first operator-narrowed job if any, otherwise a
   uniformly random one from the injected random.Random
3. Claims it with a conditional update, so concurrent triggers never
   advance the same job twice
4. Builds work, runs it in-process, applies the submissions, releases the
   claim

Errors never escape: job-level fatals and unexpected exceptions fail the
job; transient store or network trouble leaves it for the next trigger.
"""

import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from core.exceptions import JobFatalError, SubmissionError
from drivers.registry import DriverRegistry
from engine.handlers.base import JobHandler
from engine.handlers.registry import build_handlers
from engine.store import TRANSIENT_ERRORS, RecordStore
from engine.worker import Worker
from models.base import JobKind, JobStatus
from models.job import JobMixin
from schemas.api import TickSummary
from schemas.work import ClaimResponse, SubmitSummary
import logging

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    kind: JobKind
    job: JobMixin
    priority: bool = False


class JobCoordinator:
    def __init__(
        self,
        session: AsyncSession,
        registry: DriverRegistry,
        rng: Optional[random.Random] = None,
        worker: Optional[Worker] = None,
        handlers: Optional[Dict[JobKind, JobHandler]] = None
    ):
        self.store = RecordStore(session)
        self.registry = registry
        self.rng = rng or random.Random()
        self.worker = worker or Worker(registry)
        self.handlers = handlers or build_handlers(self.store, registry)

    def handler(self, kind: JobKind) -> JobHandler:
        return self.handlers[kind]

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def stale_before(self) -> datetime:
        return datetime.utcnow() - timedelta(minutes=settings.CLAIM_TIMEOUT_MINUTES)

    async def collect_candidates(self) -> List[Candidate]:
        stale_before = self.stale_before()
        candidates: List[Candidate] = []
        for kind, handler in self.handlers.items():
            jobs = await handler.candidates(settings.CANDIDATE_FETCH_LIMIT, stale_before)
            candidates.extend(Candidate(kind=kind, job=job, priority=handler.is_priority(job)) for job in jobs)
        return candidates

    def select(self, candidates: List[Candidate]) -> Candidate:
        """First priority candidate, otherwise a uniform random pick."""
        for candidate in candidates:
            if candidate.priority:
                return candidate
        return self.rng.choice(candidates)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def advance(self, dry_run: bool = False) -> TickSummary:
        try:
            candidates = await self.collect_candidates()
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Could not collect candidates, will retry: {e}")
            await self.store.rollback()
            return TickSummary(status="retry", message="Transient error selecting a job", error=str(e))

        if not candidates:
            return TickSummary(status="idle", message="No pending jobs")

        chosen = self.select(candidates)
        kind, job_id = chosen.kind, chosen.job.id
        label = f"{kind.value} job {job_id}"

        if dry_run:
            return TickSummary(
                status="dry_run",
                message=f"Would advance {label}",
                kind=kind.value,
                job_id=job_id,
                job_status=chosen.job.status.value,
                candidates=len(candidates)
            )

        handler = self.handler(kind)
        token = f"tick-{uuid.uuid4().hex[:12]}"
        try:
            claimed = await self.store.claim(handler.model, job_id, token, self.stale_before())
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Could not claim {label}, will retry: {e}")
            await self.store.rollback()
            return self._retry(label, kind, job_id, {}, candidates, e)

        if not claimed:
            logger.info(f"{label} is claimed by another tick")
            return TickSummary(
                status="busy",
                message=f"{label} is already being advanced",
                kind=kind.value,
                job_id=job_id,
                candidates=len(candidates)
            )

        logger.info(f"Advancing {label} ({len(candidates)} candidates)")
        counts: Dict[str, int] = {}

        async def on_partial(submission: Any) -> None:
            partial = await handler.submit(submission)
            _add_counts(counts, partial.counts)

        try:
            job = await handler.load_job(job_id)
            work = await handler.build_work(job)
            if work is None:
                return self._summary("completed", f"Completed {label}", kind, job, counts, candidates, done=True, remaining=0)

            submission = await self.worker.execute(work, on_partial=on_partial)
            result = await handler.submit(submission)
            _add_counts(counts, result.counts)

            job = await handler.load_job(job_id)
            status = "completed" if job.status == JobStatus.COMPLETED else "advanced"
            return self._summary(
                status, f"{status.capitalize()} {label}", kind, job, counts, candidates,
                done=result.done, remaining=result.remaining
            )

        except JobFatalError as e:
            logger.error(f"{label} failed: {e}")
            if not await self._fail(handler, job_id, e):
                return self._retry(label, kind, job_id, counts, candidates, e)
            return TickSummary(
                status="failed", message=f"{label} failed: {e.message}", kind=kind.value,
                job_id=job_id, job_status=JobStatus.FAILED.value, counts=counts,
                candidates=len(candidates), error=type(e).__name__
            )

        except TRANSIENT_ERRORS as e:
            logger.warning(f"{label} hit a transient error, will retry: {e}")
            await self.store.rollback()
            return self._retry(label, kind, job_id, counts, candidates, e)

        except Exception as e:
            logger.exception(f"Unexpected error advancing {label}")
            if not await self._fail(handler, job_id, e):
                return self._retry(label, kind, job_id, counts, candidates, e)
            return TickSummary(
                status="failed", message=f"{label} failed: {e}", kind=kind.value,
                job_id=job_id, job_status=JobStatus.FAILED.value, counts=counts,
                candidates=len(candidates), error=type(e).__name__
            )

        finally:
            await self._release(handler, job_id, token)

    def _summary(self, status, message, kind, job, counts, candidates, done, remaining) -> TickSummary:
        return TickSummary(
            status=status,
            message=message,
            kind=kind.value,
            job_id=job.id,
            job_status=job.status.value,
            counts=counts,
            remaining=remaining,
            done=done,
            candidates=len(candidates)
        )

    def _retry(self, label, kind, job_id, counts, candidates, error) -> TickSummary:
        return TickSummary(
            status="retry", message=f"Transient error advancing {label}", kind=kind.value,
            job_id=job_id, counts=counts, candidates=len(candidates), error=str(error)
        )

    async def _fail(self, handler: JobHandler, job_id: int, error: Exception) -> bool:
        """Record a job failure; False when the store is unavailable and the job is left as it was."""
        try:
            await handler.fail(job_id, error)
        except TRANSIENT_ERRORS as e:
            logger.error(f"Could not record failure of {handler.kind.value} job {job_id}: {e}")
            await self.store.rollback()
            return False
        return True

    async def _release(self, handler: JobHandler, job_id: int, token: Optional[str]) -> None:
        try:
            await self.store.release(handler.model, job_id, token)
        except TRANSIENT_ERRORS as e:
            # The claim expires after CLAIM_TIMEOUT_MINUTES
            logger.error(f"Could not release claim on {handler.kind.value} job {job_id}: {e}")

    # ------------------------------------------------------------------
    # Remote workers
    # ------------------------------------------------------------------

    async def claim_work(self, worker_id: str) -> ClaimResponse:
        """Select and claim a job for a remote worker and hand back its work unit."""
        candidates = await self.collect_candidates()
        if not candidates:
            return ClaimResponse(status="idle", message="No pending jobs")

        chosen = self.select(candidates)
        kind, job_id = chosen.kind, chosen.job.id
        handler = self.handler(kind)
        label = f"{kind.value} job {job_id}"

        if not await self.store.claim(handler.model, job_id, worker_id, self.stale_before()):
            return ClaimResponse(status="busy", message=f"{label} is already being advanced")

        try:
            job = await handler.load_job(job_id)
            work = await handler.build_work(job)
        except JobFatalError as e:
            await handler.fail(job_id, e)
            await self._release(handler, job_id, worker_id)
            return ClaimResponse(status="failed", message=f"{label} failed: {e.message}")
        except TRANSIENT_ERRORS:
            await self.store.rollback()
            await self._release(handler, job_id, worker_id)
            raise

        if work is None:
            await self._release(handler, job_id, worker_id)
            return ClaimResponse(status="completed", message=f"Completed {label}")

        logger.info(f"{label} claimed by worker {worker_id}")
        return ClaimResponse(status="claimed", message=f"Claimed {label}", work=work)

    async def submit_work(self, kind: JobKind, submission: Any) -> SubmitSummary:
        """Apply a remote worker's submission; the claim is released once the tick is over."""
        if submission.kind != kind.value:
            raise SubmissionError(
                f"Submission of kind {submission.kind} posted to {kind.value}",
                context={"job_id": submission.job_id}
            )
        handler = self.handler(kind)
        summary = await handler.submit(submission)
        if submission.final or summary.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
            await self._release(handler, submission.job_id, submission.worker_id)
        return summary


def _add_counts(total: Dict[str, int], delta: Dict[str, int]) -> None:
    for name, value in delta.items():
        total[name] = total.get(name, 0) + value
