"""Job table backing DatabaseBackend.

All queues share one table, rows are scoped by queue_id. Claiming relies on
a compare-and-swap update of (state, expires): a row can only move to
processing while its lease column is zero.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from jobqueue.db.models.base import (
    Base,
    BigIntegerId,
    JSONDocument,
    ShortString,
    UnixTimestamp,
)


class JobRecord(Base):
    """Persisted job."""

    __tablename__ = "jobqueue_jobs"

    job_id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    queue_id: Mapped[ShortString] = mapped_column(nullable=False)

    # Job type id, resolved against the job type registry
    type: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)

    # queued, processing, success or failure
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="queued")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    num_retries: Mapped[int] = mapped_column(nullable=False, default=0)

    available: Mapped[UnixTimestamp]
    processed: Mapped[UnixTimestamp]
    # Lease expiration, non-zero only while processing
    expires: Mapped[UnixTimestamp]

    __table_args__ = (
        # Claim query: queued jobs of a queue in availability order
        Index("ix_jobqueue_jobs_queue_state_available", "queue_id", "state", "available"),
        # Stale lease sweep
        Index("ix_jobqueue_jobs_expires", "expires"),
    )

    def __repr__(self) -> str:
        return f"<JobRecord(job_id={self.job_id}, queue_id={self.queue_id}, state={self.state})>"
