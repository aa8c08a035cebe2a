"""jobqueue worker service entry point.

This module provides the main Worker class that:
- Builds every configured queue and its backend
- Runs one Processor per queue concurrently
- Repeats bounded (cron) processing runs until shutdown
- Handles graceful shutdown via SIGTERM/SIGINT
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, NoReturn

from jobqueue.core.config import BackendKind, QueueSettings, Settings
from jobqueue.db import create_engine_from_settings, create_session_factory
from jobqueue.services.backends.base import BackendUnavailableError
from jobqueue.services.backends.database import DatabaseBackend
from jobqueue.services.backends.memory import MemoryBackend
from jobqueue.services.job_types import JobTypeRegistry
from jobqueue.services.queue import Queue, Threshold
from jobqueue.worker.processor import Processor

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from jobqueue.core.clock import Clock
    from jobqueue.services.backends.base import Backend

logger = logging.getLogger(__name__)


def build_queue(
    queue_settings: QueueSettings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Clock | None = None,
) -> Queue:
    """Create a queue and its backend from its settings.

    Args:
        queue_settings: The queue definition.
        session_factory: Session factory, required for database queues.
        clock: Time source shared by the backend.

    Raises:
        ValueError: If a database queue is built without a session factory.
    """
    threshold = Threshold(
        type=queue_settings.threshold_type,
        limit=queue_settings.threshold_limit,
        state=queue_settings.threshold_state,
    )
    backend: Backend
    if queue_settings.backend == BackendKind.MEMORY:
        backend = MemoryBackend(
            queue_settings.id,
            lease_time=queue_settings.lease_time,
            threshold=threshold,
            clock=clock,
        )
    else:
        if session_factory is None:
            msg = f"Queue '{queue_settings.id}' needs a database session factory"
            raise ValueError(msg)
        backend = DatabaseBackend(
            queue_settings.id,
            session_factory,
            lease_time=queue_settings.lease_time,
            threshold=threshold,
            clock=clock,
        )

    return Queue(
        id=queue_settings.id,
        backend=backend,
        label=queue_settings.label,
        processor=queue_settings.processor,
        processing_time=queue_settings.processing_time,
    )


def create_default_registry() -> JobTypeRegistry:
    """Create a registry holding the built-in and installed job types."""
    # Import handlers here to avoid circular imports
    from jobqueue.worker.handlers.echo import ECHO_JOB_TYPE, EchoJobType

    registry = JobTypeRegistry()
    registry.register(ECHO_JOB_TYPE, EchoJobType)
    registry.load_entry_points()
    return registry


class Worker:
    """Background worker processing every configured queue.

    Each queue gets its own Processor. Cron queues are processed in
    repeated runs bounded by their processing time, daemon queues with
    an unbounded processing time in a single run lasting until shutdown.

    Multiple workers can run against the same database; the backend's
    atomic claim keeps them from processing the same job twice.

    Example:
        worker = Worker(get_settings(), create_default_registry())
        await worker.start()
    """

    def __init__(
        self,
        settings: Settings,
        registry: JobTypeRegistry,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            settings: Application settings.
            registry: Job types this worker can run.
            session_factory: Session factory for database queues. Created
                from the database settings when omitted and needed.
            clock: Time source for processors and backends.
        """
        self.settings = settings
        self.registry = registry
        self.clock = clock
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = None
        self._shutdown_event = asyncio.Event()
        self._processors: dict[str, Processor] = {}
        self._started_at: datetime | None = None
        self._jobs_processed = 0

    @property
    def worker_id(self) -> str:
        return self.settings.worker.worker_id

    @property
    def jobs_processed(self) -> int:
        return self._jobs_processed

    def build_queues(self) -> list[Queue]:
        """Build every configured queue, creating the engine if needed."""
        needs_database = any(q.backend == BackendKind.DATABASE for q in self.settings.queues)
        if needs_database and self._session_factory is None:
            self._engine = create_engine_from_settings(self.settings.database)
            self._session_factory = create_session_factory(self._engine)

        return [
            build_queue(queue_settings, self._session_factory, self.clock)
            for queue_settings in self.settings.queues
        ]

    async def start(self) -> None:
        """Start the worker and process queues until stop() is called."""
        self._started_at = datetime.now(UTC)
        queues = self.build_queues()
        logger.info(
            "Worker starting: worker_id=%s, queues=%s, job_types=%s",
            self.worker_id,
            [queue.id for queue in queues],
            self.registry.types(),
        )

        try:
            await asyncio.gather(*(self._run_queue(queue) for queue in queues))
        finally:
            if self._engine is not None:
                await self._engine.dispose()
                self._engine = None

            logger.info(
                "Worker stopped: worker_id=%s, processed=%d, uptime=%s",
                self.worker_id,
                self._jobs_processed,
                self._get_uptime(),
            )

    async def stop(self) -> None:
        """Request graceful shutdown of the worker.

        Jobs in flight are finished; no new job is claimed afterwards.
        """
        logger.info("Worker shutdown requested: worker_id=%s", self.worker_id)
        self._shutdown_event.set()
        for processor in self._processors.values():
            processor.stop()

    async def _run_queue(self, queue: Queue) -> None:
        """Repeat processing runs of one queue until shutdown."""
        processor = Processor(
            self.registry,
            clock=self.clock,
            idle_interval=self.settings.worker.idle_interval,
        )
        self._processors[queue.id] = processor

        while not self._shutdown_event.is_set():
            try:
                processed = await processor.process_queue(queue)
                self._jobs_processed += processed
            except BackendUnavailableError as e:
                logger.error("Queue run failed: queue_id=%s, error=%s", queue.id, e)
            except Exception as e:
                # Log error but continue running
                logger.exception("Error in worker loop: queue_id=%s, error=%s", queue.id, e)

            # Wait before the next run (uses wait_for to allow shutdown)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.settings.worker.idle_interval,
                )

    def _get_uptime(self) -> str:
        """Calculate worker uptime as a human-readable string."""
        if self._started_at is None:
            return "0s"
        delta = datetime.now(UTC) - self._started_at
        hours, remainder = divmod(int(delta.total_seconds()), 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        elif minutes > 0:
            return f"{minutes}m {seconds}s"
        else:
            return f"{seconds}s"


# Global shutdown event for signal handlers
_shutdown_event: asyncio.Event | None = None
_loop: asyncio.AbstractEventLoop | None = None


def _handle_shutdown(signum: int, _frame: object) -> None:
    """Handle shutdown signals gracefully."""
    logger.info("Shutdown signal received (signal=%d)", signum)
    if _shutdown_event is not None and _loop is not None:
        # Set the event in a thread-safe manner
        _loop.call_soon_threadsafe(_shutdown_event.set)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the entry points.

    Safe to call again once settings are loaded to apply their level.
    """
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


async def _async_main(settings: Settings, shutdown_event: asyncio.Event) -> None:
    """Async entry point for the worker.

    Args:
        settings: Application settings.
        shutdown_event: Event to signal shutdown request.
    """
    worker = Worker(settings, create_default_registry())

    # Create a task for the worker
    worker_task = asyncio.create_task(worker.start())
    shutdown_task = asyncio.create_task(shutdown_event.wait())

    # Wait for a shutdown signal, or for the worker to end on its own
    await asyncio.wait({worker_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    shutdown_task.cancel()

    if not worker_task.done():
        # Request graceful shutdown
        await worker.stop()

        # Wait for worker to finish (with timeout)
        try:
            await asyncio.wait_for(worker_task, timeout=settings.worker.shutdown_timeout)
        except TimeoutError:
            logger.warning("Worker did not stop within timeout, forcing shutdown")
            worker_task.cancel()

    # Surface worker failures to run()
    if worker_task.done() and not worker_task.cancelled():
        worker_task.result()


def run() -> NoReturn:
    """Run the worker process.

    This is the main entry point for the worker. It:
    - Loads configuration from environment variables
    - Sets up logging
    - Registers signal handlers for graceful shutdown
    - Runs the async worker loop
    """
    from jobqueue.core.settings import get_settings

    configure_logging()
    settings = get_settings()
    configure_logging(settings.log_level)

    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    logger.info("jobqueue worker starting...")

    async def _run_with_event() -> None:
        """Create event loop context and run main."""
        global _shutdown_event, _loop
        _shutdown_event = asyncio.Event()
        _loop = asyncio.get_running_loop()
        await _async_main(settings, _shutdown_event)

    try:
        asyncio.run(_run_with_event())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        sys.exit(1)

    logger.info("jobqueue worker shutdown complete")
    sys.exit(0)


if __name__ == "__main__":
    run()
