"""Queue processor.

Drives one queue at a time: claims jobs, runs them through their job type
and commits the outcome to the queue's backend.

A Processor handles one job at a time. Throughput is scaled by running
several processors (in one process or many) against the same backend,
whose atomic claim guarantees a job is never processed twice at once.

Known limitation: the processing time budget is only checked between jobs.
A job that runs longer than the remaining budget is never interrupted and
the run ends late.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from jobqueue.core.clock import Clock, get_default_clock
from jobqueue.services.backends.base import InvalidJobStateError, JobNotFoundError
from jobqueue.services.job import Job, JobResult
from jobqueue.services.job_types import JobTypeRegistry, UnknownJobTypeError
from jobqueue.services.queue import Queue

DEFAULT_IDLE_INTERVAL = 1.0


class Processor:
    """Processes the jobs of a queue within a time budget.

    Example:
        processor = Processor(registry)
        processed = await processor.process_queue(queue)
    """

    def __init__(
        self,
        registry: JobTypeRegistry,
        *,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
        idle_interval: float = DEFAULT_IDLE_INTERVAL,
    ) -> None:
        """Initialize the processor.

        Args:
            registry: Job types available to this processor.
            clock: Time source for the run deadline and idle sleeps.
            logger: Logger for processing events, defaults to the module logger.
            idle_interval: Seconds to sleep after finding no available job.
        """
        if idle_interval < 0:
            msg = "idle_interval must not be negative"
            raise ValueError(msg)
        self.registry = registry
        self.clock = clock or get_default_clock()
        self.logger = logger or logging.getLogger(__name__)
        self.idle_interval = idle_interval
        self._stopping = False

    @property
    def is_stopping(self) -> bool:
        return self._stopping

    def stop(self) -> None:
        """Ask the current run to end after the job in flight, if any."""
        if not self._stopping:
            self.logger.info("Processor stop requested")
        self._stopping = True

    async def process_queue(self, queue: Queue) -> int:
        """Process the queue's jobs until the time budget runs out.

        Expired leases are reclaimed once at the start of the run. Then jobs
        are claimed and processed one by one until the deadline passes or
        stop() is called. An empty queue is polled every idle_interval
        seconds. Daemon queues with a zero processing time run until stopped.

        Args:
            queue: The queue to process.

        Returns:
            Number of jobs processed during this run.

        Raises:
            BackendUnavailableError: If the backend fails; the run ends.
        """
        self._stopping = False
        backend = queue.backend
        await backend.cleanup_queue()

        deadline = None if queue.is_unbounded else self.clock.now() + queue.processing_time
        processed = 0
        self.logger.info(
            "Processing queue: queue_id=%s, processing_time=%d",
            queue.id,
            queue.processing_time,
        )

        while not self._stopping:
            if deadline is not None and self.clock.now() >= deadline:
                break

            job = await backend.claim_job()
            if job is None:
                await self.clock.sleep(self.idle_interval)
                continue

            await self.process_job(job, queue)
            processed += 1

        self.logger.info(
            "Queue run finished: queue_id=%s, processed=%d, stopped=%s",
            queue.id,
            processed,
            self._stopping,
        )
        return processed

    async def process_job(self, job: Job, queue: Queue) -> JobResult:
        """Run a claimed job and commit its outcome.

        Failures reported by the job type are retried while the job has
        retries left. Unknown job types and exceptions raised by the job
        type end the job in failure immediately.

        Commits carry the claim's lease. If the job outlived its lease and
        was reclaimed, or was deleted meanwhile, the commit is dropped with
        a warning and the result is still returned.

        Args:
            job: A job claimed from the queue's backend.
            queue: The queue the job belongs to.

        Returns:
            The job's result.

        Raises:
            BackendUnavailableError: If the outcome cannot be committed.
        """
        backend = queue.backend

        try:
            job_type = self.registry.get(job.type)
        except UnknownJobTypeError as e:
            self.logger.error(
                "Unknown job type: queue_id=%s, job_id=%s, job_type=%s",
                queue.id,
                job.id,
                job.type,
            )
            result = JobResult.failure(str(e))
            await self._commit(queue, job, backend.on_failure, result.message)
            return result

        self.logger.info(
            "Processing job: queue_id=%s, job_id=%s, job_type=%s, retries=%d",
            queue.id,
            job.id,
            job.type,
            job.num_retries,
        )

        try:
            result = await job_type.process(job)
            if not isinstance(result, JobResult):
                msg = f"{type(job_type).__name__}.process() returned {type(result).__name__}"
                raise TypeError(msg)
        except Exception as e:
            self.logger.exception(
                "Job type raised: queue_id=%s, job_id=%s, job_type=%s, error=%s",
                queue.id,
                job.id,
                job.type,
                e,
            )
            result = JobResult.failure(str(e) or type(e).__name__)
            await self._commit(queue, job, backend.on_failure, result.message)
            return result

        if result.is_success:
            if await self._commit(queue, job, backend.on_success, result.message):
                self.logger.info("Job succeeded: queue_id=%s, job_id=%s", queue.id, job.id)
            return result

        max_retries = (
            result.max_retries if result.max_retries is not None else job_type.get_max_retries()
        )
        retry_delay = (
            result.retry_delay if result.retry_delay is not None else job_type.get_retry_delay()
        )
        if job.num_retries < max_retries:
            if await self._commit(queue, job, backend.retry_job, retry_delay, result.message):
                self.logger.warning(
                    "Job failed, retrying: queue_id=%s, job_id=%s, retry=%d/%d, delay=%d, "
                    "message=%s",
                    queue.id,
                    job.id,
                    job.num_retries + 1,
                    max_retries,
                    retry_delay,
                    result.message,
                )
        elif await self._commit(queue, job, backend.on_failure, result.message):
            self.logger.warning(
                "Job failed: queue_id=%s, job_id=%s, retries=%d, message=%s",
                queue.id,
                job.id,
                job.num_retries,
                result.message,
            )
        return result

    async def _commit(
        self,
        queue: Queue,
        job: Job,
        operation: Callable[..., Awaitable[Job]],
        *args: Any,
    ) -> bool:
        """Commit an outcome under the job's lease.

        Returns:
            False if the job no longer holds the lease or no longer exists.
        """
        try:
            await operation(job.id, *args, lease=job.expires_time or None)
        except (InvalidJobStateError, JobNotFoundError) as e:
            self.logger.warning(
                "Lease lost, outcome dropped: queue_id=%s, job_id=%s, error=%s",
                queue.id,
                job.id,
                e,
            )
            return False
        return True
