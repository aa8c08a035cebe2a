"""Queue definitions and the producer API.

A Queue couples an identifier with the backend that stores its jobs and
with the settings a processor needs to drive it: the processor mode and the
processing time budget. Producers enqueue work through the queue:

    queue = Queue(id="default", backend=MemoryBackend("default"))
    job_id = await queue.enqueue("echo", {"message": "hi"})
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from jobqueue.services.job import Job, JobState

if TYPE_CHECKING:
    from jobqueue.services.backends.base import Backend


DEFAULT_PROCESSING_TIME = 90


class ProcessorMode(str, Enum):
    """How a queue is processed.

    CRON queues are processed in bounded runs triggered periodically.
    DAEMON queues are processed by a long-running worker and may run
    without a time budget.
    """

    CRON = "cron"
    DAEMON = "daemon"


class ThresholdType(str, Enum):
    """Retention policy for finished jobs."""

    NONE = "none"
    ITEMS = "items"
    DAYS = "days"


class ThresholdState(str, Enum):
    """Which finished jobs the retention policy applies to."""

    SUCCESS = "success"
    ALL = "all"


@dataclass(frozen=True)
class Threshold:
    """Retention threshold applied by Backend.cleanup_queue().

    Attributes:
        type: ITEMS keeps the newest `limit` finished jobs, DAYS drops
            finished jobs processed more than `limit` days ago.
        limit: Number of items or days.
        state: SUCCESS purges successful jobs only, ALL purges failures too.
    """

    type: ThresholdType = ThresholdType.NONE
    limit: int = 0
    state: ThresholdState = ThresholdState.SUCCESS

    @property
    def enabled(self) -> bool:
        return self.type != ThresholdType.NONE and self.limit > 0

    @property
    def states(self) -> tuple[JobState, ...]:
        """Job states eligible for purging."""
        if self.state == ThresholdState.ALL:
            return (JobState.SUCCESS, JobState.FAILURE)
        return (JobState.SUCCESS,)


class Queue:
    """A named queue backed by a storage backend."""

    def __init__(
        self,
        id: str,  # noqa: A002
        backend: Backend,
        label: str = "",
        processor: ProcessorMode | str = ProcessorMode.CRON,
        processing_time: int = DEFAULT_PROCESSING_TIME,
    ) -> None:
        """Initialize the queue.

        Args:
            id: Queue identifier, also the backend's queue id.
            backend: Storage backend holding the queue's jobs.
            label: Human-readable name.
            processor: Processing mode.
            processing_time: Time budget in seconds for one processing run.
                Zero means unbounded and is only allowed for daemon queues.

        Raises:
            ValueError: If the processing time is invalid for the mode.
        """
        if not id:
            msg = "Queue id is required"
            raise ValueError(msg)
        if backend.queue_id != id:
            msg = f"Backend is bound to queue '{backend.queue_id}', not '{id}'"
            raise ValueError(msg)

        self.id = id
        self.backend = backend
        self.label = label or id
        self.processor = ProcessorMode(processor)
        self.processing_time = processing_time

    @property
    def processing_time(self) -> int:
        return self._processing_time

    @processing_time.setter
    def processing_time(self, value: int) -> None:
        if value < 0:
            msg = "processing_time must not be negative"
            raise ValueError(msg)
        if value == 0 and self.processor != ProcessorMode.DAEMON:
            msg = "An unbounded processing time is only allowed for daemon queues"
            raise ValueError(msg)
        self._processing_time = value

    @property
    def is_unbounded(self) -> bool:
        return self.processing_time == 0

    async def enqueue(
        self,
        job_type: str,
        payload: Mapping[str, Any],
        delay: int = 0,
    ) -> str:
        """Create and enqueue a job of the given type.

        Args:
            job_type: Job type id.
            payload: Job payload, may be empty but not None.
            delay: Seconds before the job becomes available.

        Returns:
            The backend-assigned job id.
        """
        return await self.enqueue_job(Job.create(job_type, payload), delay)

    async def enqueue_job(self, job: Job, delay: int = 0) -> str:
        """Enqueue an existing job definition."""
        return await self.backend.enqueue_job(job, delay)

    async def enqueue_jobs(self, jobs: Sequence[Job], delay: int = 0) -> list[str]:
        """Enqueue several jobs at once."""
        return await self.backend.enqueue_jobs(jobs, delay)

    def __repr__(self) -> str:
        return (
            f"Queue(id={self.id!r}, processor={self.processor.value}, "
            f"processing_time={self.processing_time})"
        )
