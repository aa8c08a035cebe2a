"""Operational command line for jobqueue.

Usage:
    jobqueue init-db
    jobqueue enqueue default echo --payload '{"message": "hi"}'
    jobqueue process default --time-limit 60
    jobqueue status default
    jobqueue list default --state failure --limit 20
    jobqueue retry default 42 --delay 30
    jobqueue cleanup default

Queues and the database are configured through the usual JOBQUEUE_
environment variables. Results are printed to stdout as JSON, logs go
to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import TYPE_CHECKING, Any

from jobqueue.core.config import BackendKind
from jobqueue.db import close_engine, create_schema, get_engine, get_session_factory
from jobqueue.services.backends.base import JobQueueError
from jobqueue.services.job import JobState
from jobqueue.worker.main import build_queue, configure_logging, create_default_registry
from jobqueue.worker.processor import Processor

if TYPE_CHECKING:
    from jobqueue.core.config import Settings
    from jobqueue.services.queue import Queue


class CommandError(Exception):
    """Raised for invalid command usage detected after parsing."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobqueue",
        description="Manage and process jobqueue queues",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the database tables")

    enqueue = commands.add_parser("enqueue", help="Add a job to a queue")
    enqueue.add_argument("queue", help="Queue id")
    enqueue.add_argument("type", help="Job type id")
    enqueue.add_argument(
        "--payload",
        type=json.loads,
        default={},
        help="Job payload as a JSON object",
    )
    enqueue.add_argument("--delay", type=int, default=0, help="Seconds before the job is available")

    process = commands.add_parser("process", help="Run one bounded processing run")
    process.add_argument("queue", help="Queue id")
    process.add_argument(
        "--time-limit",
        type=int,
        default=None,
        help="Processing time budget in seconds (defaults to the queue's setting)",
    )

    status = commands.add_parser("status", help="Print job counts by state")
    status.add_argument("queue", help="Queue id")

    list_ = commands.add_parser("list", help="List jobs in claim order")
    list_.add_argument("queue", help="Queue id")
    list_.add_argument("--state", choices=[state.value for state in JobState], default=None)
    list_.add_argument("--limit", type=int, default=50)

    retry = commands.add_parser("retry", help="Send a failed or stuck job back to the queue")
    retry.add_argument("queue", help="Queue id")
    retry.add_argument("job_id", help="Job id")
    retry.add_argument("--delay", type=int, default=0, help="Seconds before the job is available")

    cleanup = commands.add_parser("cleanup", help="Reclaim expired leases and purge old jobs")
    cleanup.add_argument("queue", help="Queue id")

    return parser


def _get_queue(settings: Settings, queue_id: str) -> Queue:
    queue_settings = settings.get_queue_settings(queue_id)
    if queue_settings is None:
        msg = f"Unknown queue: {queue_id}"
        raise CommandError(msg)

    session_factory = None
    if queue_settings.backend == BackendKind.DATABASE:
        session_factory = get_session_factory()
    return build_queue(queue_settings, session_factory)


def _print_json(data: Any) -> None:
    print(json.dumps(data))


async def _run_command(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "init-db":
        await create_schema(get_engine())
        print("Database schema created")
        return 0

    queue = _get_queue(settings, args.queue)
    backend = queue.backend

    if args.command == "enqueue":
        if not isinstance(args.payload, dict):
            msg = "--payload must be a JSON object"
            raise CommandError(msg)
        job_id = await queue.enqueue(args.type, args.payload, args.delay)
        _print_json({"id": job_id})

    elif args.command == "process":
        if args.time_limit is not None:
            queue.processing_time = args.time_limit
        processor = Processor(
            create_default_registry(),
            idle_interval=settings.worker.idle_interval,
        )
        processed = await processor.process_queue(queue)
        _print_json({"queue": queue.id, "processed": processed})

    elif args.command == "status":
        counts = await backend.count_jobs()
        _print_json({state.value: count for state, count in counts.items()})

    elif args.command == "list":
        state = JobState(args.state) if args.state else None
        for job in await backend.list_jobs(state=state, limit=args.limit):
            _print_json(job.to_dict())

    elif args.command == "retry":
        job = await backend.retry_job(args.job_id, args.delay)
        _print_json(job.to_dict())

    elif args.command == "cleanup":
        reclaimed = await backend.cleanup_queue()
        _print_json({"queue": queue.id, "reclaimed": reclaimed})

    return 0


async def _main(args: argparse.Namespace, settings: Settings) -> int:
    try:
        return await _run_command(args, settings)
    finally:
        await close_engine()


def main(argv: list[str] | None = None) -> int:
    """Run the command line.

    Returns:
        Process exit code: 0 on success, 1 on error.
    """
    from jobqueue.core.settings import get_settings_safe

    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging("WARNING")
    settings = get_settings_safe()
    if settings is None:
        print("ERROR: Invalid configuration, see the log above", file=sys.stderr)
        return 1
    configure_logging(settings.log_level)

    try:
        return asyncio.run(_main(args, settings))
    except (CommandError, JobQueueError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
