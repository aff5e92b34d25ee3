"""
Shared machinery for the per-kind job handlers.

A handler owns one job kind end to end on the coordinator side:

- candidates(): active jobs eligible for this tick
- build_work(): initialise a pending job and describe the next slice
- submit(): apply a worker's results, then complete or checkpoint the job

Results are applied one item per transaction. An item that fails to
persist is rolled back on its own, counted as an error and recorded in the
job's ledger; the rest of the batch carries on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Type
from sqlalchemy import or_, select
from core.config import settings
from core.exceptions import JobNotFoundError, SubmissionError
from drivers.registry import DriverRegistry
from engine.events import JobEventLog
from engine.budget import ItemBudget
from engine.store import TRANSIENT_ERRORS, RecordStore
from engine.upsert import UpsertEngine, UpsertOutcome
from models.base import JobKind, JobStatus
from models.job import JobMixin
from models.job_result import JobResult
from schemas.work import SubmitSummary
import logging

logger = logging.getLogger(__name__)


@dataclass
class AppliedItem:
    """How one result landed: ledger outcome plus the counter deltas it earns"""
    record_id: Optional[int]
    outcome: str
    error: Optional[str] = None
    deltas: Dict[str, int] = field(default_factory=dict)


class JobHandler(ABC):
    kind: JobKind
    model: Type[JobMixin]

    def __init__(self, store: RecordStore, registry: DriverRegistry, upsert: Optional[UpsertEngine] = None):
        self.store = store
        self.registry = registry
        self.upsert = upsert or UpsertEngine(store)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def candidates(self, limit: int, stale_before: datetime) -> List[JobMixin]:
        """In-progress jobs first, then pending ones, oldest first; live claims are skipped."""
        model = self.model
        claim_free = or_(model.claimed_by.is_(None), model.claimed_at < stale_before)

        in_progress = await self.store.find(
            model, model.status == JobStatus.IN_PROGRESS, claim_free,
            limit=limit, order_by=(model.created_at, model.id)
        )
        pending = await self.store.find(
            model, model.status == JobStatus.PENDING, claim_free,
            limit=limit, order_by=(model.created_at, model.id)
        )
        return in_progress + pending

    def is_priority(self, job: JobMixin) -> bool:
        """Operator-narrowed jobs jump the queue."""
        return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load_job(self, job_id: int) -> JobMixin:
        job = await self.store.find_by_id(self.model, job_id)
        if job is None:
            raise JobNotFoundError(
                f"No {self.kind.value} job with id {job_id}",
                context={"kind": self.kind.value, "job_id": job_id}
            )
        return job

    def events(self, job_id: int) -> JobEventLog:
        return JobEventLog(self.store, self.kind, job_id)

    async def initialise(self, job: JobMixin) -> None:
        """Validate scope for a pending job; raise JobFatalError when it can never run."""

    async def build_work(self, job: JobMixin) -> Optional[Any]:
        """
        Prepare the next slice of `job`.

        Pending jobs are validated and moved to in_progress first. Returns
        None when nothing is left, in which case the job has been completed.
        """
        job_id = job.id
        if job.status == JobStatus.PENDING:
            await self.initialise(job)
            job.transition_to(JobStatus.IN_PROGRESS)
            await self.events(job_id).start(f"Started {self.kind.value} job", total=job.total)

        job.processed_this_tick = 0
        await self.store.commit()

        work = await self.make_work(job)
        if work is None:
            await self.complete(job)
            return None
        return work

    @abstractmethod
    async def make_work(self, job: JobMixin) -> Optional[Any]:
        """Work unit for the next slice, or None when the scope is exhausted."""

    async def complete(self, job: JobMixin) -> None:
        job.transition_to(JobStatus.COMPLETED)
        job.checkpoint = None
        await self.events(job.id).success(f"Completed {self.kind.value} job", **job.counts())
        await self.store.commit()

    async def fail(self, job_id: int, error: Exception) -> Optional[JobMixin]:
        """Move a job straight to failed after an unrecoverable error."""
        await self.store.rollback()
        job = await self.store.find_by_id(self.model, job_id)
        if job is None or job.is_terminal:
            return job

        message = getattr(error, "message", None) or str(error)
        job.error_message = message
        job.transition_to(JobStatus.FAILED)
        await self.events(job_id).error(
            f"Job failed: {message}",
            error_type=type(error).__name__
        )
        await self.store.commit()
        return job

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def applied_keys(self, job_id: int, keys: Optional[Iterable[str]] = None) -> Set[str]:
        stmt = select(JobResult.record_key).where(
            JobResult.job_kind == self.kind,
            JobResult.job_id == job_id
        )
        if keys is not None:
            stmt = stmt.where(JobResult.record_key.in_(list(keys)))
        return set(await self.store.scalars(stmt))

    def applied(self, outcome: UpsertOutcome, **deltas: int) -> AppliedItem:
        label = "created" if outcome.created else "existing"
        return AppliedItem(
            record_id=outcome.record.id,
            outcome=label,
            deltas={label: 1, **deltas}
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def apply_results(
        self,
        job: JobMixin,
        keyed_results: List[Tuple[str, Any]],
        persist: Callable[[Any], Awaitable[AppliedItem]],
        counts: Dict[str, int]
    ) -> None:
        """Apply (record_key, result) pairs one transaction each, skipping keys already in the ledger."""
        job_id = job.id
        events = self.events(job_id)
        seen = await self.applied_keys(job_id, [key for key, _ in keyed_results])

        for key, result in keyed_results:
            if key in seen:
                counts["skipped"] = counts.get("skipped", 0) + 1
                continue
            seen.add(key)

            try:
                item = await persist(result)
                await self.store.create(
                    JobResult,
                    job_kind=self.kind,
                    job_id=job_id,
                    record_key=key,
                    record_id=item.record_id,
                    outcome=item.outcome,
                    error=item.error
                )
                deltas = dict(item.deltas)
                if item.outcome == "error":
                    deltas["errors"] = deltas.get("errors", 0) + 1
                    await events.error(f"Item failed: {key}: {item.error}", record_key=key)
                job.bump(processed_this_tick=1, **deltas)
                await self.store.commit()

            except TRANSIENT_ERRORS:
                raise

            except Exception as e:
                await self.store.rollback()
                await self.store.refresh(job)
                logger.error(f"[{self.kind.value}#{job_id}] failed to persist {key}: {e}")

                deltas = {"errors": 1}
                job.bump(**deltas)
                await events.error(
                    f"Failed to persist {key}: {getattr(e, 'message', str(e))}",
                    record_key=key,
                    error_type=type(e).__name__
                )
                await self.store.create(
                    JobResult,
                    job_kind=self.kind,
                    job_id=job_id,
                    record_key=key,
                    outcome="error",
                    error=str(e)[:2000]
                )
                await self.store.commit()

            for name, delta in deltas.items():
                counts[name] = counts.get(name, 0) + delta

    async def submit(self, submission: Any) -> SubmitSummary:
        """
        Apply a worker submission.

        Steps:
        1. Load the job fresh; terminal jobs are reported unchanged
        2. Apply each result not already in the job's ledger
        3. Complete the job when its outstanding work is zero, otherwise
           store counters and checkpoint and stay in_progress
        """
        if submission.kind != self.kind.value:
            raise SubmissionError(
                f"Submission of kind {submission.kind} sent to {self.kind.value} handler",
                context={"job_id": submission.job_id}
            )

        job = await self.load_job(submission.job_id)
        if job.is_terminal:
            return self.summary(job, {}, done=True, remaining=0)
        if job.status == JobStatus.PENDING:
            raise SubmissionError(
                f"{self.kind.value} job {job.id} has not been started",
                context={"job_id": job.id}
            )

        counts: Dict[str, int] = {}
        await self.apply_submission(job, submission, counts)

        done, remaining = await self.evaluate(job, submission)
        if done:
            await self.complete(job)
        else:
            await self.store_progress(job, submission)
            await self.store.commit()

        return self.summary(job, counts, done=done, remaining=remaining)

    @abstractmethod
    async def apply_submission(self, job: JobMixin, submission: Any, counts: Dict[str, int]) -> None:
        """Persist the submission's results."""

    @abstractmethod
    async def evaluate(self, job: JobMixin, submission: Any) -> Tuple[bool, Optional[int]]:
        """(done, remaining) after the results have been applied."""

    async def store_progress(self, job: JobMixin, submission: Any) -> None:
        checkpoint = getattr(submission, "checkpoint", None)
        if checkpoint is not None:
            # Reassign so the JSON column is flagged dirty
            job.checkpoint = checkpoint.model_dump(mode="json") if hasattr(checkpoint, "model_dump") else dict(checkpoint)

    def summary(self, job: JobMixin, counts: Dict[str, int], done: bool, remaining: Optional[int]) -> SubmitSummary:
        return SubmitSummary(
            job_id=job.id,
            kind=self.kind.value,
            status=job.status.value,
            counts=counts,
            totals=job.counts(),
            done=done,
            remaining=remaining
        )

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    @staticmethod
    def items_per_tick(job: JobMixin) -> int:
        return getattr(job, "items_per_tick", None) or settings.DEFAULT_ITEMS_PER_TICK

    @classmethod
    def item_budget(cls, job: JobMixin) -> ItemBudget:
        return ItemBudget(cls.items_per_tick(job))

    @staticmethod
    def pages_per_tick(job: JobMixin) -> int:
        return getattr(job, "pages_per_tick", None) or settings.DEFAULT_PAGES_PER_TICK

    @staticmethod
    def delay_ms(job: JobMixin) -> int:
        delay = getattr(job, "delay_ms", None)
        return settings.DEFAULT_DELAY_MS if delay is None else delay
