"""Built-in job types for the jobqueue worker.

- echo: Log the payload message and succeed
"""

from jobqueue.worker.handlers.echo import ECHO_JOB_TYPE, EchoJobType

__all__ = [
    "ECHO_JOB_TYPE",
    "EchoJobType",
]
