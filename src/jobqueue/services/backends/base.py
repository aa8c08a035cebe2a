"""Queue backend contract.

A backend is the durable storage of one queue's jobs. It hands claimed jobs
to at most one worker at a time and commits every state change atomically.

Commit methods take a job id plus the fields to change and return a fresh
Job snapshot, so processors never share a mutable job with the backend.

Any storage failure surfaces as BackendUnavailableError. Callers are
expected to let it propagate and retry on their next scheduled run.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from jobqueue.core.clock import Clock, get_default_clock
from jobqueue.services.job import Job, JobState
from jobqueue.services.queue import Threshold, ThresholdType

DEFAULT_LEASE_TIME = 300

SECONDS_PER_DAY = 60 * 60 * 24

# States from which a job may be sent back to the queue by retry_job.
RETRYABLE_STATES = (JobState.PROCESSING, JobState.FAILURE)


class JobQueueError(Exception):
    """Base exception for job queue operations."""


class BackendUnavailableError(JobQueueError):
    """Raised when the backend storage cannot be reached or fails."""


class JobNotFoundError(JobQueueError):
    """Raised when a job cannot be found."""


class InvalidJobStateError(JobQueueError):
    """Raised when a commit is not legal for the job's current state."""

    def __init__(
        self,
        job_id: str,
        state: JobState,
        operation: str,
        message: str | None = None,
    ) -> None:
        self.job_id = job_id
        self.state = state
        self.operation = operation
        super().__init__(message or f"Cannot {operation} job {job_id} in state {state.value}")


class LeaseLostError(InvalidJobStateError):
    """Raised when a commit carries a lease the job no longer holds.

    The lease expired and the job was reclaimed, then claimed again by
    another processor, which now owns it.
    """

    def __init__(self, job_id: str, operation: str, lease: int) -> None:
        self.lease = lease
        super().__init__(
            job_id,
            JobState.PROCESSING,
            operation,
            f"Cannot {operation} job {job_id}: lease {lease} is no longer held",
        )


def empty_counts() -> dict[JobState, int]:
    """Return a count mapping with every state present."""
    return {state: 0 for state in JobState}


class Backend(ABC):
    """Storage backend for one queue.

    Attributes:
        queue_id: The queue whose jobs this backend stores.
        lease_time: Seconds a claimed job stays leased.
        threshold: Retention policy applied by cleanup_queue().
        clock: Time source for every timestamp written.
        logger: Logger used for operation logging.
    """

    def __init__(
        self,
        queue_id: str,
        *,
        lease_time: int = DEFAULT_LEASE_TIME,
        threshold: Threshold | None = None,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if not queue_id:
            msg = "queue_id is required"
            raise ValueError(msg)
        if lease_time <= 0:
            msg = "lease_time must be positive"
            raise ValueError(msg)

        self.queue_id = queue_id
        self.lease_time = lease_time
        self.threshold = threshold or Threshold()
        self.clock = clock or get_default_clock()
        self.logger = logger or logging.getLogger(type(self).__module__)

    @abstractmethod
    async def delete_queue(self) -> None:
        """Delete every job of the queue."""

    @abstractmethod
    async def cleanup_queue(self) -> int:
        """Reclaim expired leases and apply the retention threshold.

        Jobs still processing after their lease expired are returned to
        the queued state without consuming a retry.

        Returns:
            Number of reclaimed jobs.
        """

    @abstractmethod
    async def count_jobs(self) -> dict[JobState, int]:
        """Count the queue's jobs, grouped by state (every state present)."""

    async def enqueue_job(self, job: Job, delay: int = 0) -> str:
        """Enqueue a single job.

        Args:
            job: The job definition. Its id and queue id are ignored.
            delay: Seconds before the job becomes available, used when the
                job carries no availability time of its own.

        Returns:
            The assigned job id.
        """
        ids = await self.enqueue_jobs([job], delay)
        return ids[0]

    @abstractmethod
    async def enqueue_jobs(self, jobs: Sequence[Job], delay: int = 0) -> list[str]:
        """Enqueue several jobs atomically.

        Returns:
            The assigned job ids, in input order.
        """

    @abstractmethod
    async def claim_job(self) -> Job | None:
        """Claim the next available job.

        Picks the queued job with the earliest availability time (ties in
        insertion order) whose availability time has passed, moves it to
        processing and leases it for lease_time seconds. A job is never
        handed to two concurrent callers.

        Returns:
            The claimed job, or None when no job is available.
        """

    @abstractmethod
    async def on_success(
        self,
        job_id: str,
        message: str | None = None,
        *,
        lease: int | None = None,
    ) -> Job:
        """Commit the success of a processing job.

        Args:
            job_id: The job to complete.
            message: Result message stored on the job.
            lease: The claimed snapshot's expires_time. When given, the
                commit only applies while the job still holds that lease.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidJobStateError: If the job is not processing.
            LeaseLostError: If the job holds another lease.
        """

    @abstractmethod
    async def on_failure(
        self,
        job_id: str,
        message: str | None = None,
        *,
        lease: int | None = None,
    ) -> Job:
        """Commit the terminal failure of a processing job.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidJobStateError: If the job is not processing.
            LeaseLostError: If lease is given and the job holds another lease.
        """

    @abstractmethod
    async def retry_job(
        self,
        job_id: str,
        delay: int = 0,
        message: str | None = None,
        *,
        lease: int | None = None,
    ) -> Job:
        """Send a processing or failed job back to the queue.

        Increments num_retries and makes the job available after delay
        seconds. With a lease, only the processing job holding that lease
        is retried; without one, failed jobs may be resubmitted too.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidJobStateError: If the job is neither processing nor failed.
            LeaseLostError: If lease is given and the job holds another lease.
        """

    @abstractmethod
    async def release_job(self, job_id: str, *, lease: int | None = None) -> Job:
        """Give a claimed job back to the queue without consuming a retry.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidJobStateError: If the job is not processing.
            LeaseLostError: If lease is given and the job holds another lease.
        """

    @abstractmethod
    async def delete_job(self, job_id: str) -> None:
        """Delete a job. Deleting a missing job is not an error."""

    @abstractmethod
    async def load_job(self, job_id: str) -> Job:
        """Load a job of this queue.

        Raises:
            JobNotFoundError: If the job does not exist in this queue.
        """

    @abstractmethod
    async def list_jobs(
        self,
        state: JobState | None = None,
        limit: int | None = None,
    ) -> list[Job]:
        """List the queue's jobs in claim order, optionally filtered by state."""

    def _availability(self, job: Job, now: int, delay: int) -> int:
        if delay < 0:
            msg = "delay must not be negative"
            raise ValueError(msg)
        return job.available_time or now + delay

    def _retention_cutoff(self, now: int) -> int | None:
        """Processed-time cutoff for DAYS thresholds, None for other types."""
        if self.threshold.type == ThresholdType.DAYS:
            return now - self.threshold.limit * SECONDS_PER_DAY
        return None
