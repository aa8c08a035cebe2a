"""Tests for the Queue entity and retention thresholds.

Tests cover:
- Queue construction and validation
- Processing time rules per processor mode
- Producer API (enqueue, enqueue_job, enqueue_jobs)
- Threshold defaults and purge states
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from jobqueue.services.backends.memory import MemoryBackend
from jobqueue.services.job import Job, JobState
from jobqueue.services.queue import (
    DEFAULT_PROCESSING_TIME,
    ProcessorMode,
    Queue,
    Threshold,
    ThresholdState,
    ThresholdType,
)
from tests.factories import START_TIME, create_job


class TestQueueInit:
    """Tests for Queue construction."""

    def test_defaults(self, memory_backend):
        """Test a queue is a cron queue with the default budget."""
        queue = Queue(id="default", backend=memory_backend)

        assert queue.label == "default"
        assert queue.processor == ProcessorMode.CRON
        assert queue.processing_time == DEFAULT_PROCESSING_TIME
        assert not queue.is_unbounded

    def test_id_required(self, memory_backend):
        """Test the queue id cannot be empty."""
        with pytest.raises(ValueError, match="required"):
            Queue(id="", backend=memory_backend)

    def test_backend_must_match_queue(self, clock):
        """Test the backend must be bound to the same queue id."""
        backend = MemoryBackend("other", clock=clock)

        with pytest.raises(ValueError, match="bound to queue 'other'"):
            Queue(id="default", backend=backend)

    def test_processor_mode_from_string(self, memory_backend):
        """Test processor modes given as strings."""
        queue = Queue(id="default", backend=memory_backend, processor="daemon")

        assert queue.processor is ProcessorMode.DAEMON

    def test_repr(self, memory_backend):
        """Test the queue repr is informative."""
        queue = Queue(id="default", backend=memory_backend, processing_time=30)

        assert repr(queue) == "Queue(id='default', processor=cron, processing_time=30)"


class TestProcessingTime:
    """Tests for processing time validation."""

    def test_unbounded_daemon_allowed(self, memory_backend):
        """Test daemon queues may run without a budget."""
        queue = Queue(
            id="default",
            backend=memory_backend,
            processor=ProcessorMode.DAEMON,
            processing_time=0,
        )

        assert queue.is_unbounded

    def test_unbounded_cron_rejected(self, memory_backend):
        """Test cron queues need a positive budget."""
        with pytest.raises(ValueError, match="only allowed for daemon queues"):
            Queue(id="default", backend=memory_backend, processing_time=0)

    def test_negative_rejected(self, memory_backend):
        """Test negative budgets are refused."""
        with pytest.raises(ValueError, match="must not be negative"):
            Queue(id="default", backend=memory_backend, processing_time=-1)

    def test_setter_validates(self, memory_queue):
        """Test changing the budget later is validated too."""
        memory_queue.processing_time = 5
        assert memory_queue.processing_time == 5

        with pytest.raises(ValueError):
            memory_queue.processing_time = 0


class TestProducerApi:
    """Tests for enqueueing through the queue."""

    @pytest.mark.asyncio
    async def test_enqueue(self, memory_queue):
        """Test enqueue creates a queued job of the given type."""
        job_id = await memory_queue.enqueue("echo", {"message": "hi"})

        job = await memory_queue.backend.load_job(job_id)
        assert job.type == "echo"
        assert job.payload == {"message": "hi"}
        assert job.state == JobState.QUEUED
        assert job.available_time == START_TIME

    @pytest.mark.asyncio
    async def test_enqueue_with_delay(self, memory_queue):
        """Test enqueue passes the delay on."""
        job_id = await memory_queue.enqueue("echo", {}, delay=60)

        job = await memory_queue.backend.load_job(job_id)
        assert job.available_time == START_TIME + 60

    @pytest.mark.asyncio
    async def test_enqueue_requires_type(self, memory_queue):
        """Test malformed jobs are refused before reaching the backend."""
        with pytest.raises(ValueError, match='Missing property "type"'):
            await memory_queue.enqueue("", {})

    @pytest.mark.asyncio
    async def test_enqueue_delegates_to_backend(self):
        """Test the queue forwards to its backend."""
        backend = MagicMock()
        backend.queue_id = "default"
        backend.enqueue_job = AsyncMock(return_value="1")
        backend.enqueue_jobs = AsyncMock(return_value=["2", "3"])
        queue = Queue(id="default", backend=backend)
        job = create_job()

        assert await queue.enqueue_job(job, delay=5) == "1"
        assert await queue.enqueue_jobs([job, job]) == ["2", "3"]

        backend.enqueue_job.assert_awaited_once_with(job, 5)
        backend.enqueue_jobs.assert_awaited_once_with([job, job], 0)

    @pytest.mark.asyncio
    async def test_enqueue_jobs(self, memory_queue):
        """Test enqueueing several jobs at once."""
        ids = await memory_queue.enqueue_jobs(
            [Job.create("echo", {"n": 1}), Job.create("echo", {"n": 2})]
        )

        assert len(ids) == 2
        assert (await memory_queue.backend.count_jobs())[JobState.QUEUED] == 2


class TestThreshold:
    """Tests for Threshold."""

    def test_default_disabled(self):
        """Test no retention by default."""
        threshold = Threshold()

        assert threshold.type == ThresholdType.NONE
        assert not threshold.enabled

    def test_zero_limit_disabled(self):
        """Test a zero limit disables retention."""
        assert not Threshold(ThresholdType.ITEMS, limit=0).enabled
        assert Threshold(ThresholdType.ITEMS, limit=1).enabled

    def test_states(self):
        """Test which states each threshold state purges."""
        assert Threshold(state=ThresholdState.SUCCESS).states == (JobState.SUCCESS,)
        assert Threshold(state=ThresholdState.ALL).states == (
            JobState.SUCCESS,
            JobState.FAILURE,
        )
