"""Queue storage backends.

- base: Backend contract and error taxonomy
- memory: In-process backend
- database: SQLAlchemy backend (PostgreSQL, SQLite)
"""

from jobqueue.services.backends.base import (
    DEFAULT_LEASE_TIME,
    Backend,
    BackendUnavailableError,
    InvalidJobStateError,
    JobNotFoundError,
    JobQueueError,
    LeaseLostError,
)
from jobqueue.services.backends.database import DatabaseBackend
from jobqueue.services.backends.memory import MemoryBackend

__all__ = [
    "DEFAULT_LEASE_TIME",
    "Backend",
    "BackendUnavailableError",
    "DatabaseBackend",
    "InvalidJobStateError",
    "JobNotFoundError",
    "JobQueueError",
    "LeaseLostError",
    "MemoryBackend",
]
