"""Echo job type.

Logs the payload's message and succeeds. Useful to check that a deployment
processes its queues end to end:

    await queue.enqueue("echo", {"message": "hello"})
"""

from __future__ import annotations

import logging

from jobqueue.services.job import Job, JobResult
from jobqueue.services.job_types import JobType

logger = logging.getLogger(__name__)

ECHO_JOB_TYPE = "echo"


class EchoJobType(JobType):
    """Logs the job payload and reports success."""

    async def process(self, job: Job) -> JobResult:
        message = job.payload.get("message", "")
        logger.info("Echo: job_id=%s, message=%s", job.id, message)
        return JobResult.success(str(message) if message else None)
