from sqlalchemy import Column, String, DateTime, Text, Enum, Index, BigInteger
from datetime import datetime
from models.base import Base, BigIntPK, JobKind


class JobResult(Base):
    """
    Ledger of the items a job has already applied.

    Purpose:
    - A re-delivered batch (worker retry, resumed tick) is recognised item by
      item, so counters are only bumped the first time
    - Discovery jobs' ledgers define the URL set of `from_discovery` crawls

    outcome is one of "created", "existing" or "error".
    """
    __tablename__ = "job_results"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    job_kind = Column(Enum(JobKind, name="job_kind"), nullable=False)
    job_id = Column(BigInteger, nullable=False)
    record_key = Column(String(2048), nullable=False)

    record_id = Column(BigInteger, nullable=True)
    outcome = Column(String(20), nullable=False)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_job_result_key", "job_kind", "job_id", "record_key", unique=True),
    )
