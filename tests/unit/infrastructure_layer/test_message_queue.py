"""
Unit Tests for the Job Queue Backends

InMemoryJobQueue is exercised for ordering, reservation, retry backoff and
lease reclaim; RedisJobQueue is checked for its key layout, reservation
script arguments and error translation with a mocked client.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError

from enhance_gateway.core.config.settings import QueueSettings
from enhance_gateway.core.exceptions import ConfigurationError, QueueConnectionError
from enhance_gateway.core.interfaces import BackoffPolicy, Job, JobOptions, JobPriority, JobQueue, JobState
from enhance_gateway.infrastructure.message_queue import InMemoryJobQueue, RedisJobQueue, create_job_queue
from enhance_gateway.infrastructure.message_queue.redis_queue import (
    PRIORITY_SCORE_FACTOR,
    PROMOTE_BATCH_LIMIT,
    JobSerializer,
)

QUEUE = "enhancement"
LEASE_MS = 60_000


def _options(priority=JobPriority.NORMAL, attempts=3, delay_ms=2000) -> JobOptions:
    return JobOptions(priority=priority, attempts=attempts, backoff=BackoffPolicy(delay_ms=delay_ms))


@pytest.mark.unit
class TestJobPriority:
    @pytest.mark.parametrize("value", ["high", "HIGH", 1, JobPriority.HIGH])
    def test_parse(self, value):
        assert JobPriority.parse(value) == JobPriority.HIGH

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            JobPriority.parse("urgent")

    def test_backoff_doubles_per_attempt(self):
        policy = BackoffPolicy(delay_ms=2000)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [2000, 4000, 8000]


@pytest.mark.unit
class TestInMemoryJobQueue:
    def test_satisfies_protocol(self, job_queue):
        assert isinstance(job_queue, JobQueue)

    async def test_add_creates_waiting_job(self, job_queue):
        job = await job_queue.add(QUEUE, {"document_id": "d1"}, _options())

        assert job.state == JobState.WAITING
        assert job.attempt == 0
        assert await job_queue.get_state(job.id) == JobState.WAITING

    async def test_reserve_orders_by_priority_then_fifo(self, job_queue):
        low = await job_queue.add(QUEUE, {"n": 1}, _options(JobPriority.LOW))
        normal_first = await job_queue.add(QUEUE, {"n": 2}, _options(JobPriority.NORMAL))
        normal_second = await job_queue.add(QUEUE, {"n": 3}, _options(JobPriority.NORMAL))
        high = await job_queue.add(QUEUE, {"n": 4}, _options(JobPriority.HIGH))

        order = [(await job_queue.reserve(QUEUE)).id for _ in range(4)]

        assert order == [high.id, normal_first.id, normal_second.id, low.id]
        assert await job_queue.reserve(QUEUE) is None

    async def test_reserve_marks_active_and_counts_attempt(self, job_queue):
        await job_queue.add(QUEUE, {}, _options())

        job = await job_queue.reserve(QUEUE)

        assert job.state == JobState.ACTIVE
        assert job.attempt == 1

    async def test_queues_are_independent(self, job_queue):
        await job_queue.add("other", {}, _options())
        assert await job_queue.reserve(QUEUE) is None

    async def test_fail_requeues_with_backoff(self, job_queue, clock):
        await job_queue.add(QUEUE, {}, _options(delay_ms=1000))
        job = await job_queue.reserve(QUEUE)

        job = await job_queue.fail(job, "boom")

        assert job.state == JobState.WAITING
        assert job.last_error == "boom"
        assert await job_queue.reserve(QUEUE) is None

        clock.advance(1000)
        retried = await job_queue.reserve(QUEUE)
        assert retried.id == job.id
        assert retried.attempt == 2

    async def test_fail_on_last_attempt_is_terminal(self, job_queue):
        await job_queue.add(QUEUE, {}, _options(attempts=1))
        job = await job_queue.reserve(QUEUE)

        job = await job_queue.fail(job, "boom")

        assert job.state == JobState.FAILED
        assert job.is_terminal
        assert await job_queue.depth(QUEUE) == 0

    async def test_complete_stores_result(self, job_queue):
        await job_queue.add(QUEUE, {}, _options())
        job = await job_queue.reserve(QUEUE)

        await job_queue.complete(job, {"enhancement_id": "e1"})

        stored = await job_queue.get_job(job.id)
        assert stored.state == JobState.COMPLETED
        assert stored.result == {"enhancement_id": "e1"}

    async def test_unknown_job(self, job_queue):
        assert await job_queue.get_job("missing") is None
        assert await job_queue.get_state("missing") is None


@pytest.mark.unit
class TestInMemoryLeases:
    """A job reserved by a worker that never reports back is taken back."""

    @pytest.fixture
    def leased_queue(self, clock):
        return InMemoryJobQueue(clock=clock, lease_ms=LEASE_MS)

    async def test_reserve_stamps_lease(self, leased_queue, clock):
        await leased_queue.add(QUEUE, {}, _options())

        job = await leased_queue.reserve(QUEUE)

        assert job.lease_expires_at == int(clock.now) + LEASE_MS

    async def test_abandoned_job_is_reserved_again(self, leased_queue, clock):
        added = await leased_queue.add(QUEUE, {}, _options())
        await leased_queue.reserve(QUEUE)

        clock.advance(24 * 60 * 60 * 1000)
        job = await leased_queue.reserve(QUEUE)

        assert job.id == added.id
        assert job.state == JobState.ACTIVE
        assert job.attempt == 2
        assert job.last_error == "lease expired"

    async def test_live_lease_is_not_reclaimed(self, leased_queue, clock):
        await leased_queue.add(QUEUE, {}, _options())
        await leased_queue.reserve(QUEUE)

        clock.advance(LEASE_MS - 1)

        assert await leased_queue.reserve(QUEUE) is None

    async def test_expired_lease_on_last_attempt_fails_job(self, leased_queue, clock):
        added = await leased_queue.add(QUEUE, {}, _options(attempts=1))
        await leased_queue.reserve(QUEUE)

        clock.advance(LEASE_MS)

        assert await leased_queue.reserve(QUEUE) is None
        job = await leased_queue.get_job(added.id)
        assert job.state == JobState.FAILED
        assert job.last_error == "lease expired"

    async def test_complete_releases_lease(self, leased_queue, clock):
        await leased_queue.add(QUEUE, {}, _options())
        job = await leased_queue.reserve(QUEUE)
        await leased_queue.complete(job, {"ok": True})

        clock.advance(LEASE_MS * 2)

        assert await leased_queue.reserve(QUEUE) is None
        assert job.state == JobState.COMPLETED
        assert job.lease_expires_at is None

    async def test_late_completion_is_not_run_again(self, leased_queue, clock):
        await leased_queue.add(QUEUE, {}, _options())
        first_hold = await leased_queue.reserve(QUEUE)
        await leased_queue.add(QUEUE, {}, _options(JobPriority.HIGH))
        clock.advance(LEASE_MS)

        # Takes the lease back, then hands out the HIGH job ahead of it
        urgent = await leased_queue.reserve(QUEUE)
        await leased_queue.complete(first_hold, {"ok": True})
        await leased_queue.complete(urgent, {})

        assert urgent.priority == JobPriority.HIGH
        assert await leased_queue.reserve(QUEUE) is None
        assert await leased_queue.depth(QUEUE) == 0


@pytest.mark.unit
class TestJobSerializer:
    def test_job_record_survives_encoding(self):
        job = Job(
            id="j1",
            queue_name=QUEUE,
            payload={"document_id": "d1"},
            priority=JobPriority.HIGH,
            max_attempts=5,
            backoff=BackoffPolicy(delay_ms=500),
            state=JobState.ACTIVE,
            attempt=2,
            created_at=10,
            updated_at=20,
            available_at=30,
        )

        assert JobSerializer.deserialize(JobSerializer.serialize(job)) == job


@pytest.mark.unit
class TestRedisJobQueue:
    @pytest.fixture
    def pipeline(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[True, 1])
        return pipe

    @pytest.fixture
    def client(self, pipeline):
        client = MagicMock()
        client.register_script.return_value = AsyncMock(return_value=None)
        client.pipeline.return_value = pipeline
        client.get = AsyncMock(return_value=None)
        return client

    def _record(self, **overrides) -> str:
        fields = {
            "id": "j1",
            "queue_name": QUEUE,
            "payload": {},
            "priority": JobPriority.NORMAL,
            "max_attempts": 3,
            "backoff": BackoffPolicy(delay_ms=1000),
        }
        fields.update(overrides)
        return JobSerializer.serialize(Job(**fields))

    async def test_add_goes_straight_to_ready_set(self, client, pipeline, clock):
        queue = RedisJobQueue(client, clock=clock)

        job = await queue.add(QUEUE, {"document_id": "d1"}, _options(JobPriority.HIGH))

        pipeline.zadd.assert_called_once_with(
            f"queue:{QUEUE}:ready", {job.id: 1 * PRIORITY_SCORE_FACTOR + int(clock.now)}
        )
        pipeline.hset.assert_called_once_with(f"queue:{QUEUE}:priorities", job.id, 1)

    async def test_reserve_empty_queue(self, client, clock):
        queue = RedisJobQueue(client, clock=clock)
        assert await queue.reserve(QUEUE) is None

    async def test_reserve_script_keys_and_args(self, client, clock):
        queue = RedisJobQueue(client, clock=clock, lease_ms=LEASE_MS)

        await queue.reserve(QUEUE)

        client.register_script.return_value.assert_awaited_once_with(
            keys=[
                f"queue:{QUEUE}:ready",
                f"queue:{QUEUE}:delayed",
                f"queue:{QUEUE}:active",
                f"queue:{QUEUE}:priorities",
            ],
            args=[int(clock.now), LEASE_MS, PRIORITY_SCORE_FACTOR, PROMOTE_BATCH_LIMIT, 2],
        )

    async def test_reserve_stamps_lease(self, client, clock):
        client.register_script.return_value = AsyncMock(return_value="j1")
        client.get = AsyncMock(return_value=self._record())
        queue = RedisJobQueue(client, clock=clock, lease_ms=LEASE_MS)

        job = await queue.reserve(QUEUE)

        assert job.state == JobState.ACTIVE
        assert job.attempt == 1
        assert job.lease_expires_at == int(clock.now) + LEASE_MS

    async def test_reclaimed_job_runs_again(self, client, clock):
        client.register_script.return_value = AsyncMock(return_value="j1")
        client.get = AsyncMock(return_value=self._record(state=JobState.ACTIVE, attempt=1))
        queue = RedisJobQueue(client, clock=clock, lease_ms=LEASE_MS)

        job = await queue.reserve(QUEUE)

        assert job.attempt == 2
        assert job.last_error == "lease expired"

    async def test_reclaimed_job_on_last_attempt_fails(self, client, pipeline, clock):
        client.register_script.return_value = AsyncMock(side_effect=["j1", None])
        client.get = AsyncMock(return_value=self._record(state=JobState.ACTIVE, attempt=3))
        queue = RedisJobQueue(client, clock=clock)

        assert await queue.reserve(QUEUE) is None

        saved = JobSerializer.deserialize(pipeline.set.call_args.args[1])
        assert saved.state == JobState.FAILED
        assert saved.last_error == "lease expired"
        pipeline.zrem.assert_called_once_with(f"queue:{QUEUE}:active", "j1")
        pipeline.hdel.assert_called_once_with(f"queue:{QUEUE}:priorities", "j1")

    async def test_fail_moves_job_to_delayed_set(self, client, pipeline, clock):
        queue = RedisJobQueue(client, clock=clock)
        job = JobSerializer.deserialize(self._record(state=JobState.ACTIVE, attempt=1))

        await queue.fail(job, "boom")

        pipeline.zadd.assert_called_once_with(f"queue:{QUEUE}:delayed", {"j1": int(clock.now) + 1000})
        pipeline.zrem.assert_called_once_with(f"queue:{QUEUE}:active", "j1")
        assert job.lease_expires_at is None

    async def test_depth_counts_ready_and_delayed(self, client, pipeline):
        pipeline.execute = AsyncMock(return_value=[2, 3])
        queue = RedisJobQueue(client)

        assert await queue.depth(QUEUE) == 5

    async def test_connection_error_translated(self, client):
        client.get.side_effect = ConnectionError("down")
        queue = RedisJobQueue(client)

        with pytest.raises(QueueConnectionError):
            await queue.get_job("j1")


@pytest.mark.unit
class TestQueueFactory:
    def test_memory_backend(self, store):
        queue = create_job_queue(QueueSettings(QUEUE_BACKEND="memory"), store)
        assert isinstance(queue, InMemoryJobQueue)

    def test_redis_backend_requires_redis_store(self, store):
        with pytest.raises(ConfigurationError):
            create_job_queue(QueueSettings(QUEUE_BACKEND="redis"), store)
