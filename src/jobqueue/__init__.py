"""jobqueue - durable background job queue.

Jobs are persisted by a queue backend, claimed under a time-bounded lease
and driven to a terminal state by a processor that enforces a processing
time budget and per-job-type retry policy.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
