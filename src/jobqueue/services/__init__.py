"""jobqueue service layer.

This package contains the queueing domain:
- Job, JobResult: Job value types and state machine
- Queue: Named queue with its processing settings and producer API
- Backend: Durable storage of a queue's jobs (memory, database)
- JobType, JobTypeRegistry: Job executors looked up by type id
"""

from jobqueue.services.backends import (
    Backend,
    BackendUnavailableError,
    DatabaseBackend,
    InvalidJobStateError,
    JobNotFoundError,
    JobQueueError,
    LeaseLostError,
    MemoryBackend,
)
from jobqueue.services.job import Job, JobResult, JobState
from jobqueue.services.job_types import JobType, JobTypeRegistry, UnknownJobTypeError
from jobqueue.services.queue import (
    ProcessorMode,
    Queue,
    Threshold,
    ThresholdState,
    ThresholdType,
)

__all__ = [
    "Backend",
    "BackendUnavailableError",
    "DatabaseBackend",
    "InvalidJobStateError",
    "Job",
    "JobNotFoundError",
    "JobQueueError",
    "LeaseLostError",
    "JobResult",
    "JobState",
    "JobType",
    "JobTypeRegistry",
    "MemoryBackend",
    "ProcessorMode",
    "Queue",
    "Threshold",
    "ThresholdState",
    "ThresholdType",
    "UnknownJobTypeError",
]
