"""Job type executors and their registry.

A job type is the code that runs a job. Job types are looked up by the
job's type string:

    registry = JobTypeRegistry()

    @registry.register("send_mail")
    class SendMailJobType(JobType):
        max_retries = 3
        retry_delay = 60

        async def process(self, job: Job) -> JobResult:
            ...
            return JobResult.success()

Expected failures are returned as JobResult.failure(...) and are retried
according to the job type's retry policy. Exceptions raised from process()
are treated as defects and never retried.

Third-party packages can contribute job types through the
"jobqueue.job_types" entry point group, see JobTypeRegistry.load_entry_points().
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from importlib.metadata import entry_points

from jobqueue.services.job import Job, JobResult

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "jobqueue.job_types"

DEFAULT_MAX_RETRIES = 0
DEFAULT_RETRY_DELAY = 10


class JobType(ABC):
    """Executor for one kind of job.

    Attributes:
        max_retries: Retries allowed after a failed attempt, unless the
            JobResult overrides it.
        retry_delay: Seconds to wait before a retried job becomes available,
            unless the JobResult overrides it.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: int = DEFAULT_RETRY_DELAY

    @abstractmethod
    async def process(self, job: Job) -> JobResult:
        """Run the job.

        Args:
            job: Snapshot of the claimed job.

        Returns:
            The outcome. Business failures are reported here, not raised.
        """

    def get_max_retries(self) -> int:
        return self.max_retries

    def get_retry_delay(self) -> int:
        return self.retry_delay


JobTypeFactory = Callable[[], JobType]


class UnknownJobTypeError(LookupError):
    """Raised when no job type is registered under a type id."""

    def __init__(self, type_id: str) -> None:
        self.type_id = type_id
        super().__init__(f"Unknown job type: {type_id}")


class JobTypeRegistry:
    """Maps job type ids to job type executors.

    Registrations take either a JobType instance or a zero-argument factory
    (typically the JobType subclass itself). Factories are called on first
    lookup and the instance is cached afterwards.
    """

    def __init__(self) -> None:
        self._factories: dict[str, JobType | JobTypeFactory] = {}
        self._instances: dict[str, JobType] = {}

    def register(
        self,
        type_id: str,
        job_type: JobType | JobTypeFactory | None = None,
    ):
        """Register a job type.

        Can be called directly or used as a class decorator:

            registry.register("echo", EchoJobType)

            @registry.register("echo")
            class EchoJobType(JobType): ...

        Registering an id again replaces the previous job type.

        Args:
            type_id: Job type id, matched against Job.type.
            job_type: JobType instance or factory. Omit to use as decorator.

        Raises:
            ValueError: If type_id is empty.
        """
        if not type_id:
            msg = "Job type id is required"
            raise ValueError(msg)

        if job_type is None:

            def decorator(factory):
                self.register(type_id, factory)
                return factory

            return decorator

        if type_id in self._factories:
            logger.warning("Replacing job type: type=%s", type_id)
        self._factories[type_id] = job_type
        self._instances.pop(type_id, None)
        logger.debug("Registered job type: type=%s", type_id)
        return job_type

    def get(self, type_id: str) -> JobType:
        """Get the executor for a job type id.

        Raises:
            UnknownJobTypeError: If nothing is registered under type_id.
        """
        instance = self._instances.get(type_id)
        if instance is not None:
            return instance

        registered = self._factories.get(type_id)
        if registered is None:
            raise UnknownJobTypeError(type_id)

        instance = registered if isinstance(registered, JobType) else registered()
        if not isinstance(instance, JobType):
            msg = f"Factory for job type {type_id} returned {type(instance).__name__}"
            raise TypeError(msg)
        self._instances[type_id] = instance
        return instance

    def has(self, type_id: str) -> bool:
        return type_id in self._factories

    def types(self) -> list[str]:
        """Registered job type ids, sorted."""
        return sorted(self._factories)

    def load_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """Register the job types advertised by installed packages.

        Each entry point's name is the job type id and its object is a
        JobType subclass, instance or factory.

        Returns:
            Number of job types registered.
        """
        count = 0
        for entry_point in entry_points(group=group):
            self.register(entry_point.name, entry_point.load())
            count += 1
        logger.info("Loaded job types from entry points: group=%s, count=%d", group, count)
        return count

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._factories

    def __len__(self) -> int:
        return len(self._factories)
