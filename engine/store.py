"""
Narrow record store over an async SQLAlchemy session.

Everything the engine persists goes through these few operations. Filters
are plain SQLAlchemy boolean expressions (equality, ranges, `in_`,
`and_`/`or_`), so callers never build raw SQL.
"""

from datetime import datetime
from typing import Any, List, Optional, Sequence, Type, TypeVar
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession
from core.exceptions import RetryableError, StoreUnavailableError
from models.job import ACTIVE_STATUSES
import logging

logger = logging.getLogger(__name__)

M = TypeVar("M")

# Errors after which the same store operation may succeed on a later tick
TRANSIENT_ERRORS = (RetryableError, OperationalError, PoolTimeoutError)


class RecordStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(
        self,
        model: Type[M],
        *where: Any,
        limit: Optional[int] = None,
        order_by: Sequence[Any] = ()
    ) -> List[M]:
        stmt = select(model).where(*where)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_one(self, model: Type[M], *where: Any) -> Optional[M]:
        rows = await self.find(model, *where, limit=1)
        return rows[0] if rows else None

    async def find_by_id(self, model: Type[M], record_id: int) -> Optional[M]:
        """Load a row fresh from the database, discarding any cached state."""
        return await self.session.get(model, record_id, populate_existing=True)

    async def count(self, model: Type[M], *where: Any) -> int:
        stmt = select(func.count()).select_from(model).where(*where)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def scalars(self, stmt: Any) -> List[Any]:
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, model: Type[M], **data: Any) -> M:
        record = model(**data)
        self.session.add(record)
        await self.session.flush()
        return record

    async def update(self, record: M, **data: Any) -> M:
        for key, value in data.items():
            setattr(record, key, value)
        await self.session.flush()
        return record

    async def update_where(self, model: Type[M], *where: Any, **data: Any) -> int:
        stmt = (
            update(model)
            .where(*where)
            .values(**data)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    # ------------------------------------------------------------------
    # Job claims
    # ------------------------------------------------------------------

    async def claim(self, model: Type[M], job_id: int, token: str, stale_before: datetime) -> bool:
        """
        Atomically take the claim on an active job.

        The conditional update only matches a pending/in_progress row whose
        claim is free, stale, or already held by `token`; exactly one
        concurrent caller sees rowcount == 1.
        """
        claimed = await self.update_where(
            model,
            model.id == job_id,
            model.status.in_(ACTIVE_STATUSES),
            or_(
                model.claimed_by.is_(None),
                model.claimed_at < stale_before,
                model.claimed_by == token,
            ),
            claimed_by=token,
            claimed_at=datetime.utcnow(),
        )
        await self.commit()
        return claimed == 1

    async def release(self, model: Type[M], job_id: int, token: Optional[str] = None) -> None:
        """Drop the claim held by `token`, or any claim when no token is given."""
        where = [model.id == job_id]
        if token is not None:
            where.append(model.claimed_by == token)
        await self.update_where(model, *where, claimed_by=None, claimed_at=None)
        await self.commit()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except (OperationalError, PoolTimeoutError) as e:
            await self.session.rollback()
            raise StoreUnavailableError(
                "Store write failed",
                context={"operation": "commit"},
                original_exception=e
            )

    async def rollback(self) -> None:
        await self.session.rollback()

    async def refresh(self, record: Any) -> None:
        await self.session.refresh(record)
