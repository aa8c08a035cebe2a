"""In-process queue backend.

Keeps jobs in a dictionary guarded by a lock. Every operation runs entirely
under the lock without awaiting, so claims are atomic both for coroutines
sharing an event loop and for threads sharing the backend instance.

Jobs do not survive the process; use DatabaseBackend for durable storage.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Sequence

from jobqueue.services.backends.base import (
    RETRYABLE_STATES,
    Backend,
    InvalidJobStateError,
    JobNotFoundError,
    LeaseLostError,
    empty_counts,
)
from jobqueue.services.job import Job, JobState
from jobqueue.services.queue import ThresholdType


class MemoryBackend(Backend):
    """Backend storing one queue's jobs in memory."""

    def __init__(self, queue_id: str, **kwargs) -> None:
        super().__init__(queue_id, **kwargs)
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    async def delete_queue(self) -> None:
        with self._lock:
            self._jobs.clear()
        self.logger.info("Queue deleted: queue_id=%s", self.queue_id)

    async def cleanup_queue(self) -> int:
        now = self.clock.now()
        with self._lock:
            reclaimed = []
            for job_id, job in list(self._jobs.items()):
                if job.state == JobState.PROCESSING and 0 < job.expires_time < now:
                    self._jobs[job_id] = job.with_state(JobState.QUEUED)
                    reclaimed.append(job_id)
            purged = self._purge_finished(now)

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

    def _purge_finished(self, now: int) -> int:
        threshold = self.threshold
        if not threshold.enabled:
            return 0

        finished = [job for job in self._jobs.values() if job.state in threshold.states]
        if threshold.type == ThresholdType.DAYS:
            delete_before = self._retention_cutoff(now)
        else:
            if len(finished) < threshold.limit:
                return 0
            newest_first = sorted(finished, key=lambda job: job.processed_time, reverse=True)
            delete_before = newest_first[threshold.limit - 1].processed_time

        doomed = [job.id for job in finished if job.processed_time < delete_before]
        for job_id in doomed:
            del self._jobs[job_id]
        return len(doomed)

    async def count_jobs(self) -> dict[JobState, int]:
        counts = empty_counts()
        with self._lock:
            for job in self._jobs.values():
                counts[job.state] += 1
        return counts

    async def enqueue_jobs(self, jobs: Sequence[Job], delay: int = 0) -> list[str]:
        now = self.clock.now()
        with self._lock:
            prepared = []
            for job in jobs:
                job_id = str(next(self._ids))
                prepared.append(
                    job.evolve(
                        id=job_id,
                        queue_id=self.queue_id,
                        state=JobState.QUEUED,
                        expires_time=0,
                        available_time=self._availability(job, now, delay),
                    )
                )
            for job in prepared:
                self._jobs[job.id] = job

        ids = [job.id for job in prepared]
        self.logger.info(
            "Jobs enqueued: queue_id=%s, job_ids=%s, delay=%d", self.queue_id, ids, delay
        )
        return ids

    async def claim_job(self) -> Job | None:
        now = self.clock.now()
        with self._lock:
            eligible = [
                job
                for job in self._jobs.values()
                if job.state == JobState.QUEUED
                and job.available_time <= now
                and job.expires_time == 0
            ]
            if not eligible:
                return None
            job = min(eligible, key=lambda j: (j.available_time, int(j.id)))
            claimed = job.evolve(
                state=JobState.PROCESSING,
                processed_time=now,
                expires_time=now + self.lease_time,
            )
            self._jobs[job.id] = claimed

        self.logger.info(
            "Job claimed: queue_id=%s, job_id=%s, job_type=%s, expires=%d",
            self.queue_id,
            claimed.id,
            claimed.type,
            claimed.expires_time,
        )
        return claimed

    async def on_success(
        self, job_id: str, message: str | None = None, *, lease: int | None = None
    ) -> Job:
        return self._finish(job_id, JobState.SUCCESS, message, "complete", lease)

    async def on_failure(
        self, job_id: str, message: str | None = None, *, lease: int | None = None
    ) -> Job:
        return self._finish(job_id, JobState.FAILURE, message, "fail", lease)

    def _finish(
        self,
        job_id: str,
        state: JobState,
        message: str | None,
        operation: str,
        lease: int | None,
    ) -> Job:
        now = self.clock.now()
        with self._lock:
            job = self._get_committable(job_id, operation, (JobState.PROCESSING,), lease)
            finished = job.with_state(state).evolve(
                message=message,
                processed_time=now,
            )
            self._jobs[job.id] = finished

        self.logger.info(
            "Job finished: queue_id=%s, job_id=%s, state=%s",
            self.queue_id,
            job_id,
            state.value,
        )
        return finished

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
        now = self.clock.now()
        with self._lock:
            job = self._get_committable(job_id, "retry", RETRYABLE_STATES, lease)
            retried = job.with_state(JobState.QUEUED).evolve(
                num_retries=job.num_retries + 1,
                available_time=now + delay,
                message=message if message is not None else job.message,
            )
            self._jobs[job.id] = retried

        self.logger.info(
            "Job scheduled for retry: queue_id=%s, job_id=%s, retry=%d, available=%d",
            self.queue_id,
            job_id,
            retried.num_retries,
            retried.available_time,
        )
        return retried

    async def release_job(self, job_id: str, *, lease: int | None = None) -> Job:
        with self._lock:
            job = self._get_committable(job_id, "release", (JobState.PROCESSING,), lease)
            released = job.with_state(JobState.QUEUED)
            self._jobs[job.id] = released
        self.logger.info("Job released: queue_id=%s, job_id=%s", self.queue_id, job_id)
        return released

    async def delete_job(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    async def load_job(self, job_id: str) -> Job:
        with self._lock:
            return self._get(job_id)

    async def list_jobs(
        self,
        state: JobState | None = None,
        limit: int | None = None,
    ) -> list[Job]:
        with self._lock:
            jobs = [job for job in self._jobs.values() if state is None or job.state == state]
        jobs.sort(key=lambda j: (j.available_time, int(j.id)))
        return jobs[:limit] if limit is not None else jobs

    def _get(self, job_id: str) -> Job:
        job = self._jobs.get(str(job_id))
        if job is None:
            msg = f"Job not found: {job_id}"
            raise JobNotFoundError(msg)
        return job

    def _get_committable(
        self,
        job_id: str,
        operation: str,
        states: Sequence[JobState],
        lease: int | None,
    ) -> Job:
        """Return the job if the commit is legal. Call with the lock held."""
        job = self._get(job_id)
        if lease is not None:
            # Only the processor holding the lease may commit
            states = (JobState.PROCESSING,)
        if job.state not in states:
            raise InvalidJobStateError(job_id, job.state, operation)
        if lease is not None and job.expires_time != lease:
            raise LeaseLostError(job_id, operation, lease)
        return job
