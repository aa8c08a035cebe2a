"""SQLAlchemy queue backend.

Stores jobs in the jobqueue_jobs table, scoped by queue id. Works with
PostgreSQL (psycopg) in production and SQLite (aiosqlite) for development.

Claiming is a single conditional UPDATE:

    UPDATE jobqueue_jobs SET state='processing', processed=:now, expires=:lease
    WHERE job_id = (SELECT job_id ... ORDER BY available, job_id LIMIT 1
                    FOR UPDATE SKIP LOCKED)
      AND expires = 0
    RETURNING *

On PostgreSQL, SKIP LOCKED lets concurrent workers pass over rows another
transaction is claiming. The expires = 0 guard makes the update a
compare-and-swap, so a row already leased by a concurrent claim matches
nothing and the claim is retried against the next candidate.

Every operation runs in its own short transaction. Database errors are
logged and raised as BackendUnavailableError.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from jobqueue.db.models.jobs import JobRecord
from jobqueue.services.backends.base import (
    RETRYABLE_STATES,
    Backend,
    BackendUnavailableError,
    InvalidJobStateError,
    JobNotFoundError,
    LeaseLostError,
    empty_counts,
)
from jobqueue.services.job import Job, JobState

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Attempts made by claim_job when its candidate is taken concurrently.
MAX_CLAIM_ATTEMPTS = 3


class DatabaseBackend(Backend):
    """Backend storing one queue's jobs in a SQL database."""

    def __init__(
        self,
        queue_id: str,
        session_factory: async_sessionmaker[AsyncSession],
        **kwargs: Any,
    ) -> None:
        """Initialize the backend.

        Args:
            queue_id: The queue whose jobs this backend stores.
            session_factory: Factory for async database sessions.
            **kwargs: lease_time, threshold, clock and logger, see Backend.
        """
        super().__init__(queue_id, **kwargs)
        self._session_factory = session_factory

    async def delete_queue(self) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(JobRecord).where(JobRecord.queue_id == self.queue_id)
                )
        except SQLAlchemyError as e:
            self.logger.error("Failed to delete queue %s: %s", self.queue_id, str(e))
            raise BackendUnavailableError(f"Failed to delete queue: {e}") from e

        self.logger.info(
            "Queue deleted: queue_id=%s, jobs=%d", self.queue_id, result.rowcount
        )

    async def cleanup_queue(self) -> int:
        now = self.clock.now()
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(JobRecord)
                    .where(
                        JobRecord.queue_id == self.queue_id,
                        JobRecord.state == JobState.PROCESSING.value,
                        JobRecord.expires != 0,
                        JobRecord.expires < now,
                    )
                    .values(state=JobState.QUEUED.value, expires=0)
                    .returning(JobRecord.job_id)
                    .execution_options(synchronize_session=False)
                )
                reclaimed = [str(job_id) for job_id in result.scalars()]
                purged = await self._purge_finished(session, now)
        except SQLAlchemyError as e:
            self.logger.error("Failed to clean up queue %s: %s", self.queue_id, str(e))
            raise BackendUnavailableError(f"Failed to clean up queue: {e}") from e

        if reclaimed:
            self.logger.warning(
                "Reclaimed %d expired leases: queue_id=%s, job_ids=%s",
                len(reclaimed),
                self.queue_id,
                reclaimed,
            )
        if purged:
            self.logger.info("Purged %d finished jobs: queue_id=%s", purged, self.queue_id)
        return len(reclaimed)

    async def _purge_finished(self, session: AsyncSession, now: int) -> int:
        threshold = self.threshold
        if not threshold.enabled:
            return 0

        finished = (
            JobRecord.queue_id == self.queue_id,
            JobRecord.state.in_([state.value for state in threshold.states]),
        )
        delete_before = self._retention_cutoff(now)
        if delete_before is None:
            # Keep the newest `limit` finished jobs
            delete_before = await session.scalar(
                select(JobRecord.processed)
                .where(*finished)
                .order_by(JobRecord.processed.desc())
                .offset(threshold.limit - 1)
                .limit(1)
            )
            if delete_before is None:
                return 0

        result = await session.execute(
            delete(JobRecord)
            .where(*finished, JobRecord.processed < delete_before)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def count_jobs(self) -> dict[JobState, int]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(JobRecord.state, func.count())
                    .where(JobRecord.queue_id == self.queue_id)
                    .group_by(JobRecord.state)
                )
                rows = result.all()
        except SQLAlchemyError as e:
            self.logger.error("Failed to count jobs in %s: %s", self.queue_id, str(e))
            raise BackendUnavailableError(f"Failed to count jobs: {e}") from e

        counts = empty_counts()
        for state, count in rows:
            counts[JobState(state)] = count
        return counts

    async def enqueue_jobs(self, jobs: Sequence[Job], delay: int = 0) -> list[str]:
        now = self.clock.now()
        records = [
            JobRecord(
                queue_id=self.queue_id,
                type=job.type,
                payload=dict(job.payload),
                state=JobState.QUEUED.value,
                message=job.message,
                num_retries=job.num_retries,
                available=self._availability(job, now, delay),
                processed=job.processed_time,
                expires=0,
            )
            for job in jobs
        ]
        if not records:
            return []

        try:
            async with self._session_factory() as session, session.begin():
                session.add_all(records)
                await session.flush()
                ids = [str(record.job_id) for record in records]
        except SQLAlchemyError as e:
            self.logger.error("Failed to enqueue jobs in %s: %s", self.queue_id, str(e))
            raise BackendUnavailableError(f"Failed to enqueue jobs: {e}") from e

        self.logger.info(
            "Jobs enqueued: queue_id=%s, job_ids=%s, delay=%d", self.queue_id, ids, delay
        )
        return ids

    async def claim_job(self) -> Job | None:
        try:
            for _ in range(MAX_CLAIM_ATTEMPTS):
                now = self.clock.now()
                candidate = (
                    select(JobRecord.job_id)
                    .where(
                        JobRecord.queue_id == self.queue_id,
                        JobRecord.state == JobState.QUEUED.value,
                        JobRecord.available <= now,
                        JobRecord.expires == 0,
                    )
                    .order_by(JobRecord.available, JobRecord.job_id)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                    .scalar_subquery()
                )
                async with self._session_factory() as session, session.begin():
                    if not await self._has_candidate(session, now):
                        return None
                    result = await session.scalars(
                        update(JobRecord)
                        .where(JobRecord.job_id == candidate, JobRecord.expires == 0)
                        .values(
                            state=JobState.PROCESSING.value,
                            processed=now,
                            expires=now + self.lease_time,
                        )
                        .returning(JobRecord)
                        .execution_options(synchronize_session=False)
                    )
                    record = result.first()
                    claimed = _to_job(record) if record is not None else None

                if claimed is not None:
                    self.logger.info(
                        "Job claimed: queue_id=%s, job_id=%s, job_type=%s, expires=%d",
                        self.queue_id,
                        claimed.id,
                        claimed.type,
                        claimed.expires_time,
                    )
                    return claimed

                self.logger.debug("Claim lost to a concurrent worker: queue_id=%s", self.queue_id)
        except SQLAlchemyError as e:
            self.logger.error("Failed to claim job in %s: %s", self.queue_id, str(e))
            raise BackendUnavailableError(f"Failed to claim job: {e}") from e

        return None

    async def _has_candidate(self, session: AsyncSession, now: int) -> bool:
        """Cheap read-only check so idle polling does not take write locks."""
        job_id = await session.scalar(
            select(JobRecord.job_id)
            .where(
                JobRecord.queue_id == self.queue_id,
                JobRecord.state == JobState.QUEUED.value,
                JobRecord.available <= now,
                JobRecord.expires == 0,
            )
            .limit(1)
        )
        return job_id is not None

    async def on_success(
        self, job_id: str, message: str | None = None, *, lease: int | None = None
    ) -> Job:
        return await self._transition(
            job_id,
            "complete",
            (JobState.PROCESSING,),
            {
                "state": JobState.SUCCESS.value,
                "message": message,
                "processed": self.clock.now(),
                "expires": 0,
            },
            lease,
        )

    async def on_failure(
        self, job_id: str, message: str | None = None, *, lease: int | None = None
    ) -> Job:
        return await self._transition(
            job_id,
            "fail",
            (JobState.PROCESSING,),
            {
                "state": JobState.FAILURE.value,
                "message": message,
                "processed": self.clock.now(),
                "expires": 0,
            },
            lease,
        )

    async def retry_job(
        self,
        job_id: str,
        delay: int = 0,
        message: str | None = None,
        *,
        lease: int | None = None,
    ) -> Job:
        if delay < 0:
            msg = "delay must not be negative"
            raise ValueError(msg)
        values: dict[str, Any] = {
            "state": JobState.QUEUED.value,
            "num_retries": JobRecord.num_retries + 1,
            "available": self.clock.now() + delay,
            "expires": 0,
        }
        if message is not None:
            values["message"] = message
        return await self._transition(job_id, "retry", RETRYABLE_STATES, values, lease)

    async def release_job(self, job_id: str, *, lease: int | None = None) -> Job:
        return await self._transition(
            job_id,
            "release",
            (JobState.PROCESSING,),
            {"state": JobState.QUEUED.value, "expires": 0},
            lease,
        )

    async def _transition(
        self,
        job_id: str,
        operation: str,
        from_states: Sequence[JobState],
        values: dict[str, Any],
        lease: int | None = None,
    ) -> Job:
        """Apply a conditional update to one job.

        The update only matches while the job is in one of from_states, so
        a commit racing a lease reclaim cannot overwrite the newer state.
        With a lease, it also only matches while the job is processing
        under that lease, so a stale processor cannot commit over the
        processor that claimed the job after it.

        Raises:
            JobNotFoundError: If the job does not exist in this queue.
            InvalidJobStateError: If the job is not in one of from_states.
            LeaseLostError: If the job is processing under another lease.
            BackendUnavailableError: On database errors.
        """
        record_id = _record_id(job_id)
        conditions = [
            JobRecord.job_id == record_id,
            JobRecord.queue_id == self.queue_id,
        ]
        if lease is not None:
            from_states = (JobState.PROCESSING,)
            conditions.append(JobRecord.expires == lease)
        conditions.append(JobRecord.state.in_([state.value for state in from_states]))

        try:
            async with self._session_factory() as session, session.begin():
                result = await session.scalars(
                    update(JobRecord)
                    .where(*conditions)
                    .values(**values)
                    .returning(JobRecord)
                    .execution_options(synchronize_session=False)
                )
                record = result.first()
                if record is None:
                    current = await self._get_record(session, record_id)
                    if current is None:
                        raise JobNotFoundError(f"Job not found: {job_id}")
                    current_state = JobState(current.state)
                    if current_state in from_states and lease is not None:
                        raise LeaseLostError(str(job_id), operation, lease)
                    raise InvalidJobStateError(str(job_id), current_state, operation)
                job = _to_job(record)
        except (JobNotFoundError, InvalidJobStateError):
            raise
        except SQLAlchemyError as e:
            self.logger.error("Failed to %s job %s: %s", operation, job_id, str(e))
            raise BackendUnavailableError(f"Failed to {operation} job: {e}") from e

        self.logger.info(
            "Job updated: queue_id=%s, job_id=%s, operation=%s, state=%s, retries=%d",
            self.queue_id,
            job.id,
            operation,
            job.state.value,
            job.num_retries,
        )
        return job

    async def delete_job(self, job_id: str) -> None:
        try:
            record_id = _record_id(job_id)
        except JobNotFoundError:
            return
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    delete(JobRecord).where(
                        JobRecord.job_id == record_id,
                        JobRecord.queue_id == self.queue_id,
                    )
                )
        except SQLAlchemyError as e:
            self.logger.error("Failed to delete job %s: %s", job_id, str(e))
            raise BackendUnavailableError(f"Failed to delete job: {e}") from e

    async def load_job(self, job_id: str) -> Job:
        record_id = _record_id(job_id)
        try:
            async with self._session_factory() as session:
                record = await self._get_record(session, record_id)
                job = _to_job(record) if record is not None else None
        except SQLAlchemyError as e:
            self.logger.error("Failed to load job %s: %s", job_id, str(e))
            raise BackendUnavailableError(f"Failed to load job: {e}") from e

        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    async def list_jobs(
        self,
        state: JobState | None = None,
        limit: int | None = None,
    ) -> list[Job]:
        query = (
            select(JobRecord)
            .where(JobRecord.queue_id == self.queue_id)
            .order_by(JobRecord.available, JobRecord.job_id)
        )
        if state is not None:
            query = query.where(JobRecord.state == JobState(state).value)
        if limit is not None:
            query = query.limit(limit)

        try:
            async with self._session_factory() as session:
                result = await session.scalars(query)
                return [_to_job(record) for record in result]
        except SQLAlchemyError as e:
            self.logger.error("Failed to list jobs in %s: %s", self.queue_id, str(e))
            raise BackendUnavailableError(f"Failed to list jobs: {e}") from e

    async def _get_record(self, session: AsyncSession, record_id: int) -> JobRecord | None:
        return await session.scalar(
            select(JobRecord).where(
                JobRecord.job_id == record_id,
                JobRecord.queue_id == self.queue_id,
            )
        )


def _record_id(job_id: str) -> int:
    try:
        return int(job_id)
    except (TypeError, ValueError):
        raise JobNotFoundError(f"Job not found: {job_id}") from None


def _to_job(record: JobRecord) -> Job:
    return Job(
        id=str(record.job_id),
        queue_id=record.queue_id,
        type=record.type,
        payload=record.payload or {},
        state=JobState(record.state),
        message=record.message,
        num_retries=record.num_retries,
        available_time=record.available,
        processed_time=record.processed,
        expires_time=record.expires,
    )
