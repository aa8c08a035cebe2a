"""jobqueue worker service.

Long-running process that drives every configured queue:
- Cron queues are processed in repeated runs bounded by their processing time
- Daemon queues may run a single unbounded run until shutdown
- Expired leases are reclaimed at the start of every run

Usage:
    # Run as module
    python -m jobqueue.worker

    # Or through the console script
    jobqueue-worker
"""

from jobqueue.worker.main import Worker, build_queue, create_default_registry, run
from jobqueue.worker.processor import Processor

__all__ = ["Processor", "Worker", "build_queue", "create_default_registry", "run"]
