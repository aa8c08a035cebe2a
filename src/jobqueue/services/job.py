"""Job and job result value types.

A Job is an immutable snapshot of one unit of queued work. Backends hand out
snapshots when jobs are claimed or loaded, and every state change goes
through a backend commit method that returns a fresh snapshot. Nothing
mutates a Job in place.

State machine:
    queued -> processing            (claim)
    processing -> success           (on_success)
    processing -> queued            (retry_job, num_retries + 1)
    processing -> failure           (on_failure)
    processing -> queued            (lease expired, reclaimed by cleanup_queue)
    failure -> queued               (explicit resubmission via retry_job)

The expires_time lease is only meaningful while the job is processing; any
other state implies expires_time == 0.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Self


class JobState(str, Enum):
    """Lifecycle state of a job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILURE = "failure"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition happens without a resubmission."""
        return self in (JobState.SUCCESS, JobState.FAILURE)


def _coerce_state(state: JobState | str) -> JobState:
    try:
        return JobState(state)
    except ValueError:
        msg = f'Invalid state "{state}" given.'
        raise ValueError(msg) from None


@dataclass(frozen=True)
class Job:
    """One unit of queued work and its lifecycle state.

    Attributes:
        type: Job type id, resolved against the job type registry.
        payload: Serializable parameters passed to the job type.
        state: Current lifecycle state.
        id: Backend-assigned identifier, empty until enqueued.
        queue_id: Owning queue, empty until enqueued.
        message: Result or error message from the last processing attempt.
        num_retries: Number of retries consumed so far.
        available_time: Unix timestamp before which the job is not claimed.
        processed_time: Unix timestamp of the last processing attempt.
        expires_time: Unix timestamp at which the current lease expires.
    """

    type: str
    payload: Mapping[str, Any]
    state: JobState = JobState.QUEUED
    id: str = ""
    queue_id: str = ""
    message: str | None = None
    num_retries: int = 0
    available_time: int = 0
    processed_time: int = 0
    expires_time: int = 0

    def __post_init__(self) -> None:
        if not self.type or not isinstance(self.type, str):
            msg = 'Missing property "type"'
            raise ValueError(msg)
        if self.payload is None or not isinstance(self.payload, Mapping):
            msg = 'Missing property "payload"'
            raise ValueError(msg)
        if self.state is None or self.state == "":
            msg = 'Missing property "state"'
            raise ValueError(msg)
        object.__setattr__(self, "state", _coerce_state(self.state))
        object.__setattr__(self, "payload", dict(self.payload))
        if self.num_retries < 0:
            msg = "num_retries must not be negative"
            raise ValueError(msg)
        if self.state != JobState.PROCESSING and self.expires_time:
            object.__setattr__(self, "expires_time", 0)

    @classmethod
    def create(cls, type: str, payload: Mapping[str, Any]) -> Self:  # noqa: A002
        """Create a new job, ready to be queued."""
        return cls(type=type, payload=payload, state=JobState.QUEUED)

    def with_state(self, state: JobState | str) -> Self:
        """Return a copy in the given state.

        Only the set of valid states is enforced here; transitions are the
        business of the processor and the backend commit methods. Leaving
        the processing state clears the lease.
        """
        new_state = _coerce_state(state)
        changes: dict[str, Any] = {"state": new_state}
        if new_state != JobState.PROCESSING:
            changes["expires_time"] = 0
        return dataclasses.replace(self, **changes)

    def evolve(self, **changes: Any) -> Self:
        """Return a copy with the given fields replaced.

        Raises:
            ValueError: If an attempt is made to change type or payload.
        """
        for name in ("type", "payload"):
            if name in changes and changes[name] != getattr(self, name):
                msg = f"Job {name} is immutable; create a new job instead"
                raise ValueError(msg)
        return dataclasses.replace(self, **changes)

    @property
    def is_leased(self) -> bool:
        """Whether the job currently holds a processing lease."""
        return self.state == JobState.PROCESSING and self.expires_time > 0

    def to_dict(self) -> dict[str, Any]:
        """Return the job as a plain dictionary."""
        return {
            "id": self.id,
            "queue_id": self.queue_id,
            "type": self.type,
            "payload": dict(self.payload),
            "state": self.state.value,
            "message": self.message,
            "num_retries": self.num_retries,
            "available": self.available_time,
            "processed": self.processed_time,
            "expires": self.expires_time,
        }

    @classmethod
    def from_dict(cls, definition: Mapping[str, Any]) -> Self:
        """Build a job from a stored definition.

        Accepts the keys produced by to_dict(). Missing optional keys fall
        back to their defaults.

        Raises:
            ValueError: If type, payload or state is missing or invalid.
        """
        for required in ("type", "payload", "state"):
            if definition.get(required) is None or definition.get(required) == "":
                msg = f'Missing property "{required}"'
                raise ValueError(msg)
        return cls(
            type=definition["type"],
            payload=definition["payload"],
            state=definition["state"],
            id=str(definition.get("id") or ""),
            queue_id=str(definition.get("queue_id") or ""),
            message=definition.get("message") or None,
            num_retries=int(definition.get("num_retries") or 0),
            available_time=int(definition.get("available") or 0),
            processed_time=int(definition.get("processed") or 0),
            expires_time=int(definition.get("expires") or 0),
        )


@dataclass(frozen=True)
class JobResult:
    """Outcome reported by a job type after processing a job.

    Attributes:
        state: Either success or failure.
        message: Optional human-readable message, stored on the job.
        max_retries: Overrides the job type's max retries when set.
        retry_delay: Overrides the job type's retry delay (seconds) when set.
    """

    state: JobState
    message: str | None = None
    max_retries: int | None = None
    retry_delay: int | None = None

    def __post_init__(self) -> None:
        state = _coerce_state(self.state)
        if state not in (JobState.SUCCESS, JobState.FAILURE):
            msg = f'Invalid result state "{state.value}" given.'
            raise ValueError(msg)
        object.__setattr__(self, "state", state)
        if self.max_retries is not None and self.max_retries < 0:
            msg = "max_retries must not be negative"
            raise ValueError(msg)
        if self.retry_delay is not None and self.retry_delay < 0:
            msg = "retry_delay must not be negative"
            raise ValueError(msg)

    @classmethod
    def success(cls, message: str | None = None) -> Self:
        """Create a successful result."""
        return cls(JobState.SUCCESS, message)

    @classmethod
    def failure(
        cls,
        message: str | None = None,
        max_retries: int | None = None,
        retry_delay: int | None = None,
    ) -> Self:
        """Create a failed result, optionally overriding the retry policy."""
        return cls(JobState.FAILURE, message, max_retries, retry_delay)

    @property
    def is_success(self) -> bool:
        return self.state == JobState.SUCCESS
