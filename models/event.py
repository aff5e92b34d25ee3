from sqlalchemy import Column, String, DateTime, Text, Enum, Index, BigInteger
from datetime import datetime
from models.base import Base, BigIntPK, JSONType, JobKind, EventType


class Event(Base):
    """
    Append-only audit trail entry for a job.

    Rows are only ever inserted; operators poll them to follow a job's
    progress (start, per-batch info, item errors, final success).
    """
    __tablename__ = "events"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    job_kind = Column(Enum(JobKind, name="job_kind"), nullable=False)
    job_id = Column(BigInteger, nullable=False)

    type = Column(Enum(EventType, name="event_type"), nullable=False, index=True)
    level = Column(String(10), nullable=False, default="info")
    message = Column(Text, nullable=False)
    context = Column(JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_event_job", "job_kind", "job_id", "created_at"),
    )
