"""
Tests for the Redis job queue (run against the in-memory Redis double).
"""
import json
from decimal import Decimal

import pytest

from swap_engine.jobs import JobQueue, JobState
from swap_engine.jobs.queue import ENQUEUE_SCRIPT
from swap_engine.models import OrderJob


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(fake_redis, clock):
    return JobQueue(fake_redis, attempts=3, backoff_seconds=2.0, lock_seconds=30, clock=clock)


def job(order_id: str = "order-1") -> OrderJob:
    return OrderJob(
        order_id=order_id, user_id=1, wallet_address="wallet",
        token_in="SOL", token_out="USDC", amount_in=Decimal("1"),
    )


# ============================================================================
# Enqueue / dedup
# ============================================================================

class TestEnqueue:
    """Admission keyed by order id."""

    @pytest.mark.asyncio
    async def test_enqueue(self, queue, fake_redis):
        handle = await queue.enqueue(job())

        assert handle.created is True
        assert handle.job_id == "order-1"
        assert await queue.get_state("order-1") == JobState.WAITING
        assert fake_redis.lists["order-queue:wait"] == ["order-1"]

    @pytest.mark.asyncio
    async def test_duplicate_refused(self, queue, fake_redis):
        await queue.enqueue(job())
        second = await queue.enqueue(job())

        assert second.created is False
        assert fake_redis.lists["order-queue:wait"] == ["order-1"]

    @pytest.mark.asyncio
    async def test_admission_is_one_script(self, queue, fake_redis, monkeypatch):
        scripts = []
        run_script = fake_redis.eval

        async def recording_eval(script, numkeys, *args):
            scripts.append(script)
            return await run_script(script, numkeys, *args)

        monkeypatch.setattr(fake_redis, "eval", recording_eval)

        await queue.enqueue(job())

        assert scripts == [ENQUEUE_SCRIPT]
        record = await queue.get_job("order-1")
        assert record["state"] == JobState.WAITING
        assert record["max_attempts"] == "3"
        assert OrderJob.from_json(record["data"]) == job()

    @pytest.mark.asyncio
    async def test_failed_admission_leaves_nothing_behind(self, queue, fake_redis, monkeypatch):
        async def unreachable(*args):
            raise ConnectionError("redis down")

        monkeypatch.setattr(fake_redis, "eval", unreachable)
        with pytest.raises(ConnectionError):
            await queue.enqueue(job())
        monkeypatch.undo()

        assert await queue.get_job("order-1") is None
        assert (await queue.enqueue(job())).created is True

    @pytest.mark.asyncio
    async def test_duplicate_refused_after_completion(self, queue):
        await queue.enqueue(job())
        await queue.complete(await queue.pull(0.01))

        again = await queue.enqueue(job())

        assert again.created is False
        assert (await queue.counts())[JobState.WAITING] == 0

    @pytest.mark.asyncio
    async def test_duplicate_refused_after_trim(self, fake_redis, clock):
        queue = JobQueue(fake_redis, keep_completed=1, clock=clock)
        for order_id in ("a", "b"):
            await queue.enqueue(job(order_id))
            await queue.complete(await queue.pull(0.01))

        record = await queue.get_job("a")
        assert "data" not in record
        assert record["state"] == JobState.COMPLETED
        assert fake_redis.lists["order-queue:completed"] == ["b"]

        assert (await queue.enqueue(job("a"))).created is False


# ============================================================================
# Pull / complete / fail
# ============================================================================

class TestLifecycle:
    """Worker-side operations."""

    @pytest.mark.asyncio
    async def test_pull_locks_job(self, queue, fake_redis):
        await queue.enqueue(job())

        queued = await queue.pull(0.01)

        assert queued.job == job()
        assert queued.attempt == 1
        assert queued.is_final_attempt is False
        assert fake_redis.strings["order-queue:lock:order-1"] == queued.lock_token
        assert await queue.get_state("order-1") == JobState.ACTIVE
        assert await queue.is_live("order-1")

    @pytest.mark.asyncio
    async def test_pull_fifo(self, queue):
        for order_id in ("first", "second"):
            await queue.enqueue(job(order_id))

        assert (await queue.pull(0.01)).job_id == "first"
        assert (await queue.pull(0.01)).job_id == "second"

    @pytest.mark.asyncio
    async def test_pull_empty(self, queue):
        assert await queue.pull(0.01) is None

    @pytest.mark.asyncio
    async def test_pull_drops_job_without_payload(self, queue, fake_redis):
        await fake_redis.lpush("order-queue:wait", "ghost")

        assert await queue.pull(0.01) is None
        assert fake_redis.lists["order-queue:active"] == []

    @pytest.mark.asyncio
    async def test_complete(self, queue, fake_redis):
        await queue.enqueue(job())
        queued = await queue.pull(0.01)

        await queue.complete(queued, {"status": "confirmed"})

        record = await queue.get_job("order-1")
        assert record["state"] == JobState.COMPLETED
        assert record["attempts_made"] == "1"
        assert json.loads(record["return_value"]) == {"status": "confirmed"}
        assert "order-queue:lock:order-1" not in fake_redis.strings
        assert not await queue.is_live("order-1")

    @pytest.mark.asyncio
    async def test_fail_schedules_retry_with_backoff(self, queue, fake_redis, clock):
        await queue.enqueue(job())

        outcome = await queue.fail(await queue.pull(0.01), "venue down")

        assert outcome == JobState.DELAYED
        assert fake_redis.zsets["order-queue:delayed"]["order-1"] == clock.now * 1000 + 2000
        assert await queue.is_live("order-1")

        clock.advance(1.9)
        assert await queue.promote_delayed() == 0

        clock.advance(0.2)
        assert await queue.promote_delayed() == 1
        retry = await queue.pull(0.01)
        assert retry.attempt == 2
        assert (await queue.get_job("order-1"))["failed_reason"] == "venue down"

    @pytest.mark.asyncio
    async def test_final_attempt_fails(self, queue, clock):
        await queue.enqueue(job())
        for _ in range(2):
            await queue.fail(await queue.pull(0.01), "boom")
            clock.advance(60)
            await queue.promote_delayed()

        last = await queue.pull(0.01)
        assert last.is_final_attempt

        assert await queue.fail(last, "boom") == JobState.FAILED
        assert await queue.get_state("order-1") == JobState.FAILED
        assert (await queue.counts())[JobState.FAILED] == 1

    @pytest.mark.asyncio
    async def test_fail_without_retry(self, queue):
        await queue.enqueue(job())

        outcome = await queue.fail(await queue.pull(0.01), "bad token", retry=False)

        assert outcome == JobState.FAILED

    def test_backoff_doubles(self, queue):
        assert [queue.backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_extend_lock(self, queue, fake_redis):
        await queue.enqueue(job())
        queued = await queue.pull(0.01)

        assert await queue.extend_lock(queued)

        fake_redis.strings["order-queue:lock:order-1"] = "someone-else"
        assert not await queue.extend_lock(queued)


# ============================================================================
# Stalled jobs
# ============================================================================

class TestStalled:
    """Recovery of jobs whose lock expired."""

    @pytest.mark.asyncio
    async def test_needs_two_sightings(self, queue, fake_redis):
        await queue.enqueue(job())
        queued = await queue.pull(0.01)
        fake_redis.expire_now("order-queue:lock:order-1")
        assert not await queue.is_live("order-1")

        assert await queue.recover_stalled() == []

        recovered = await queue.recover_stalled()
        assert [(q.job_id, outcome) for q, outcome in recovered] == [("order-1", JobState.DELAYED)]
        assert recovered[0][0].attempts_made == queued.attempts_made
        assert fake_redis.lists["order-queue:active"] == []

    @pytest.mark.asyncio
    async def test_locked_job_left_alone(self, queue):
        await queue.enqueue(job())
        await queue.pull(0.01)

        assert await queue.recover_stalled() == []
        assert await queue.recover_stalled() == []

    @pytest.mark.asyncio
    async def test_relocked_between_checks(self, queue, fake_redis):
        await queue.enqueue(job())
        queued = await queue.pull(0.01)
        fake_redis.expire_now("order-queue:lock:order-1")
        await queue.recover_stalled()

        await fake_redis.set("order-queue:lock:order-1", queued.lock_token)

        assert await queue.recover_stalled() == []


class TestLockOwnership:
    """Only the current lock holder can record an outcome."""

    @pytest.mark.asyncio
    async def test_expired_worker_cannot_finish_reassigned_job(self, queue, fake_redis, clock):
        await queue.enqueue(job())
        first = await queue.pull(0.01)
        fake_redis.expire_now("order-queue:lock:order-1")
        await queue.recover_stalled()
        await queue.recover_stalled()
        clock.advance(60)
        await queue.promote_delayed()
        second = await queue.pull(0.01)

        assert second.attempt == 2
        assert not await queue.extend_lock(first)
        assert await queue.complete(first, {"status": "confirmed"}) is False
        assert await queue.fail(first, "late failure") is None
        assert await queue.get_state("order-1") == JobState.ACTIVE
        assert fake_redis.strings["order-queue:lock:order-1"] == second.lock_token
        assert fake_redis.lists["order-queue:active"] == ["order-1"]

        # Still locked by the second worker, so never treated as stalled
        assert await queue.recover_stalled() == []
        assert await queue.recover_stalled() == []

        assert await queue.complete(second) is True
        assert await queue.get_state("order-1") == JobState.COMPLETED
        assert fake_redis.lists["order-queue:completed"] == ["order-1"]

    @pytest.mark.asyncio
    async def test_recovery_skips_job_finished_meanwhile(self, queue, fake_redis):
        await queue.enqueue(job())
        queued = await queue.pull(0.01)
        fake_redis.expire_now("order-queue:lock:order-1")
        await queue.recover_stalled()

        await fake_redis.set("order-queue:lock:order-1", queued.lock_token)
        assert await queue.complete(queued) is True

        assert await queue.recover_stalled() == []
        assert await queue.get_state("order-1") == JobState.COMPLETED


class TestCounts:

    @pytest.mark.asyncio
    async def test_counts(self, queue):
        for order_id in ("a", "b", "c"):
            await queue.enqueue(job(order_id))
        await queue.pull(0.01)

        assert await queue.counts() == {
            JobState.WAITING: 2,
            JobState.ACTIVE: 1,
            JobState.DELAYED: 0,
            JobState.COMPLETED: 0,
            JobState.FAILED: 0,
        }
