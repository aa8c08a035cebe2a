"""SQLAlchemy ORM models for jobqueue.

- base: Common metadata and type definitions
- jobs: Job table used by the database backend
"""

from jobqueue.db.models.base import Base, metadata
from jobqueue.db.models.jobs import JobRecord

__all__ = [
    "Base",
    "JobRecord",
    "metadata",
]
