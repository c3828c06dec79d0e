"""
Redis-backed job queue with per-order deduplication.

Layout under ``{name}``:

    {name}:job:{id}     hash   state, data, attempts, timestamps, failure reason
    {name}:wait         list   ids ready to run (LPUSH in, pulled from the right)
    {name}:active       list   ids pulled by a worker
    {name}:delayed      zset   ids waiting for a retry, scored by due time (ms)
    {name}:lock:{id}    string lock token of the worker running the job
    {name}:completed    list   finished ids, newest first
    {name}:failed       list   failed ids, newest first
    {name}:limiter      zset   job start times for the shared rate limit

The job id is the order id. The ``state`` field of the job hash is written
with HSETNX and is never deleted, so an order is admitted at most once; job
payloads of old finished jobs are trimmed but the record stays.

Admission and every outcome (complete, fail, stalled recovery) run as one Lua
script each. An outcome is only recorded by the holder of the job lock, so a
worker whose lock expired cannot finish a job that was handed to another.
"""
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import redis.asyncio as redis

from swap_engine.models import OrderJob

logger = logging.getLogger(__name__)

# KEYS: job hash, wait list
# ARGV: job id, initial state, field/value pairs
ENQUEUE_SCRIPT = """
if redis.call("hsetnx", KEYS[1], "state", ARGV[2]) == 0 then
    return 0
end
for i = 3, #ARGV, 2 do
    redis.call("hset", KEYS[1], ARGV[i], ARGV[i + 1])
end
redis.call("lpush", KEYS[2], ARGV[1])
return 1
"""

# KEYS: lock
# ARGV: token, ttl ms
EXTEND_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""

# KEYS: lock, active list, job hash, target (finished list or delayed zset)
# ARGV: token ("" = lock must be absent), job id, delayed score ("" = push to list),
#       field/value pairs
FINISH_SCRIPT = """
local holder = redis.call("get", KEYS[1])
if ARGV[1] == "" then
    if holder then
        return 0
    end
elseif holder ~= ARGV[1] then
    return 0
end
if redis.call("lrem", KEYS[2], 0, ARGV[2]) == 0 then
    return 0
end
redis.call("del", KEYS[1])
for i = 4, #ARGV, 2 do
    redis.call("hset", KEYS[3], ARGV[i], ARGV[i + 1])
end
if ARGV[3] == "" then
    redis.call("lpush", KEYS[4], ARGV[2])
else
    redis.call("zadd", KEYS[4], ARGV[3], ARGV[2])
end
return 1
"""


class JobState:
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobHandle:
    """Result of an enqueue. ``created`` is False for a duplicate."""
    job_id: str
    created: bool


@dataclass
class QueuedJob:
    """A job pulled by a worker."""
    job: OrderJob
    attempts_made: int
    max_attempts: int
    lock_token: str

    @property
    def job_id(self) -> str:
        return self.job.order_id

    @property
    def attempt(self) -> int:
        """1-based number of the attempt in progress."""
        return self.attempts_made + 1

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


class JobQueue:
    """
    Order job queue.

    Retries use exponential backoff: attempt ``n`` failing schedules the next
    one after ``backoff_seconds * 2 ** (n - 1)``.
    """

    def __init__(
        self,
        client: redis.Redis,
        name: str = "order-queue",
        attempts: int = 3,
        backoff_seconds: float = 2.0,
        lock_seconds: float = 30.0,
        keep_completed: int = 100,
        keep_failed: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = client
        self.name = name
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.lock_seconds = lock_seconds
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self._clock = clock
        self._stall_candidates: Set[str] = set()

    # --- Keys ---

    def _key(self, *parts: str) -> str:
        return ":".join((self.name,) + parts)

    def _job_key(self, job_id: str) -> str:
        return self._key("job", job_id)

    def _lock_key(self, job_id: str) -> str:
        return self._key("lock", job_id)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def _lock_ms(self) -> int:
        return int(self.lock_seconds * 1000)

    @property
    def client(self) -> redis.Redis:
        return self._redis

    @property
    def limiter_key(self) -> str:
        """Sorted set of job start times shared by every worker of this queue."""
        return self._key("limiter")

    # --- Producer side ---

    async def enqueue(self, job: OrderJob) -> JobHandle:
        """
        Admit a job unless one already exists for the order.

        A duplicate (in any state, including finished) is refused and the
        existing handle is returned with ``created=False``.
        """
        job_id = job.order_id
        job_key = self._job_key(job_id)

        fields = {
            "data": job.to_json(),
            "attempts_made": 0,
            "max_attempts": self.attempts,
            "created_at": self._now_ms(),
        }
        created = await self._redis.eval(
            ENQUEUE_SCRIPT, 2, job_key, self._key("wait"),
            job_id, JobState.WAITING, *self._flatten(fields),
        )
        if not created:
            state = await self._redis.hget(job_key, "state")
            logger.info(f"Duplicate job for order {job_id} refused (existing job is {state})")
            return JobHandle(job_id=job_id, created=False)

        logger.info(f"Enqueued job {job_id}")
        return JobHandle(job_id=job_id, created=True)

    # --- Worker side ---

    async def pull(self, timeout: float = 1.0) -> Optional[QueuedJob]:
        """
        Block up to ``timeout`` seconds for the next job and lock it.

        Returns None when nothing arrived in time.
        """
        job_id = await self._redis.blmove(
            self._key("wait"), self._key("active"), timeout, "RIGHT", "LEFT"
        )
        if job_id is None:
            return None

        token = uuid.uuid4().hex
        await self._redis.set(self._lock_key(job_id), token, px=self._lock_ms)

        fields = await self._redis.hgetall(self._job_key(job_id))
        if not fields or "data" not in fields:
            logger.warning(f"Job {job_id} has no payload, dropping it")
            await self._redis.lrem(self._key("active"), 0, job_id)
            await self._redis.delete(self._lock_key(job_id))
            return None

        await self._redis.hset(self._job_key(job_id), mapping={
            "state": JobState.ACTIVE,
            "processed_at": self._now_ms(),
        })
        return QueuedJob(
            job=OrderJob.from_json(fields["data"]),
            attempts_made=int(fields.get("attempts_made", 0)),
            max_attempts=int(fields.get("max_attempts", self.attempts)),
            lock_token=token,
        )

    async def extend_lock(self, queued: QueuedJob) -> bool:
        """
        Renew the job lock.

        Returns False if the lock is no longer held by this worker.
        """
        renewed = await self._redis.eval(
            EXTEND_LOCK_SCRIPT, 1, self._lock_key(queued.job_id), queued.lock_token, self._lock_ms,
        )
        return bool(renewed)

    async def complete(self, queued: QueuedJob, result: Optional[Dict[str, Any]] = None) -> bool:
        """
        Mark the job completed.

        Returns False, leaving the job untouched, if the caller no longer
        holds its lock.
        """
        job_id = queued.job_id
        finished = await self._finish(queued, self._key("completed"), {
            "state": JobState.COMPLETED,
            "attempts_made": queued.attempts_made + 1,
            "finished_at": self._now_ms(),
            "return_value": json.dumps(result or {}),
        })
        if not finished:
            logger.warning(f"Job {job_id} not completed: lock no longer held")
            return False

        await self._trim(self._key("completed"), self.keep_completed)
        logger.info(f"Job {job_id} completed")
        return True

    async def fail(self, queued: QueuedJob, error: str, retry: bool = True) -> Optional[str]:
        """
        Record a failed attempt.

        Returns:
            ``"delayed"`` if a retry was scheduled, ``"failed"`` if not, or
            None when the caller no longer holds the job lock and nothing was
            recorded
        """
        job_id = queued.job_id
        attempts_made = queued.attempts_made + 1

        if retry and attempts_made < queued.max_attempts:
            delay = self.backoff_delay(attempts_made)
            finished = await self._finish(
                queued,
                self._key("delayed"),
                {"state": JobState.DELAYED, "attempts_made": attempts_made, "failed_reason": error},
                score=self._now_ms() + int(delay * 1000),
            )
            if not finished:
                logger.warning(f"Job {job_id} failure not recorded: lock no longer held")
                return None
            logger.warning(
                f"Job {job_id} attempt {attempts_made}/{queued.max_attempts} failed, "
                f"retrying in {delay:.1f}s: {error}"
            )
            return JobState.DELAYED

        finished = await self._finish(queued, self._key("failed"), {
            "state": JobState.FAILED,
            "attempts_made": attempts_made,
            "failed_reason": error,
            "finished_at": self._now_ms(),
        })
        if not finished:
            logger.warning(f"Job {job_id} failure not recorded: lock no longer held")
            return None
        await self._trim(self._key("failed"), self.keep_failed)
        logger.error(f"Job {job_id} failed after {attempts_made} attempt(s): {error}")
        return JobState.FAILED

    def backoff_delay(self, attempts_made: int) -> float:
        return self.backoff_seconds * (2 ** (attempts_made - 1))

    # --- Maintenance ---

    async def promote_delayed(self) -> int:
        """Move retries whose backoff has elapsed back to the wait list."""
        due = await self._redis.zrangebyscore(self._key("delayed"), "-inf", self._now_ms())
        promoted = 0
        for job_id in due:
            # Only the caller that removes the id moves it
            if not await self._redis.zrem(self._key("delayed"), job_id):
                continue
            await self._redis.hset(self._job_key(job_id), "state", JobState.WAITING)
            await self._redis.lpush(self._key("wait"), job_id)
            promoted += 1
        if promoted:
            logger.info(f"Promoted {promoted} delayed job(s)")
        return promoted

    async def recover_stalled(self) -> List[Tuple[QueuedJob, str]]:
        """
        Fail active jobs whose worker stopped renewing the lock.

        An id must be seen without a lock on two consecutive checks before it
        is treated as stalled, which leaves room for a worker that has just
        pulled the job and not yet locked it. Each stalled job counts as a
        failed attempt.

        Returns:
            (job, ``"delayed"`` or ``"failed"``) for every recovered job
        """
        active = await self._redis.lrange(self._key("active"), 0, -1)
        unlocked = set()
        for job_id in active:
            if not await self._redis.exists(self._lock_key(job_id)):
                unlocked.add(job_id)

        stalled = unlocked & self._stall_candidates
        self._stall_candidates = unlocked - stalled

        recovered: List[Tuple[QueuedJob, str]] = []
        for job_id in stalled:
            fields = await self._redis.hgetall(self._job_key(job_id))
            if not fields or "data" not in fields:
                await self._redis.lrem(self._key("active"), 0, job_id)
                continue
            # Empty token: recorded only while the job is still active and unlocked
            queued = QueuedJob(
                job=OrderJob.from_json(fields["data"]),
                attempts_made=int(fields.get("attempts_made", 0)),
                max_attempts=int(fields.get("max_attempts", self.attempts)),
                lock_token="",
            )
            outcome = await self.fail(queued, "job stalled: worker lock expired")
            if outcome is None:
                continue
            logger.warning(f"Job {job_id} stalled (lock expired)")
            recovered.append((queued, outcome))
        return recovered

    # --- Introspection ---

    async def get_state(self, job_id: str) -> Optional[str]:
        return await self._redis.hget(self._job_key(job_id), "state")

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        fields = await self._redis.hgetall(self._job_key(job_id))
        return fields or None

    async def is_live(self, job_id: str) -> bool:
        """True while the job is waiting, delayed, or active under a held lock."""
        state = await self.get_state(job_id)
        if state in (JobState.WAITING, JobState.DELAYED):
            return True
        if state == JobState.ACTIVE:
            return bool(await self._redis.exists(self._lock_key(job_id)))
        return False

    async def counts(self) -> Dict[str, int]:
        return {
            JobState.WAITING: await self._redis.llen(self._key("wait")),
            JobState.ACTIVE: await self._redis.llen(self._key("active")),
            JobState.DELAYED: await self._redis.zcard(self._key("delayed")),
            JobState.COMPLETED: await self._redis.llen(self._key("completed")),
            JobState.FAILED: await self._redis.llen(self._key("failed")),
        }

    # --- Internal ---

    @staticmethod
    def _flatten(fields: Dict[str, Any]) -> List[Any]:
        flat: List[Any] = []
        for name, value in fields.items():
            flat.extend((name, value))
        return flat

    async def _finish(
        self,
        queued: QueuedJob,
        target_key: str,
        fields: Dict[str, Any],
        score: Optional[int] = None,
    ) -> bool:
        """Release the job and record its outcome if ``queued`` still owns it."""
        job_id = queued.job_id
        finished = await self._redis.eval(
            FINISH_SCRIPT, 4,
            self._lock_key(job_id), self._key("active"), self._job_key(job_id), target_key,
            queued.lock_token, job_id, "" if score is None else score, *self._flatten(fields),
        )
        return bool(finished)

    async def _trim(self, list_key: str, keep: int) -> None:
        """Drop payloads of finished jobs beyond ``keep``; the job record stays."""
        while await self._redis.llen(list_key) > keep:
            job_id = await self._redis.rpop(list_key)
            if job_id is None:
                break
            await self._redis.hdel(self._job_key(job_id), "data", "return_value")
