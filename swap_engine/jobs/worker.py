"""
Worker pool.

A fixed number of asyncio tasks pull jobs from the queue and run them through
the order processor. One maintenance task promotes due retries, recovers
stalled jobs and periodically runs the reconciliation sweep.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from swap_engine.exceptions import JobLockLostError, QueueExhaustedError
from swap_engine.execution.orders import OrderProcessor, is_retryable
from swap_engine.jobs.queue import JobQueue, JobState, QueuedJob
from swap_engine.jobs.rate_limiter import RateLimiter
from swap_engine.models import OrderStatus

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Concurrent job runner.

    Attributes:
        concurrency: Number of jobs processed at the same time
        limiter: Shared limit on job starts
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: OrderProcessor,
        concurrency: int = 10,
        limiter: Optional[RateLimiter] = None,
        poll_timeout: float = 1.0,
        maintenance_interval: float = 1.0,
        reconciler=None,
        reconcile_interval: float = 60.0,
    ):
        self.queue = queue
        self.processor = processor
        self.concurrency = concurrency
        self.limiter = limiter or RateLimiter(queue.client, queue.limiter_key, max_jobs=100, window_seconds=60.0)
        self.poll_timeout = poll_timeout
        self.maintenance_interval = maintenance_interval
        self.reconciler = reconciler
        self.reconcile_interval = reconcile_interval

        self._running = False
        self._workers: List[asyncio.Task] = []
        self._maintenance: Optional[asyncio.Task] = None
        self._in_flight = 0

        self.completed_count = 0
        self.failed_count = 0
        self.retried_count = 0
        self.abandoned_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"worker-{i}")
            for i in range(self.concurrency)
        ]
        self._maintenance = asyncio.create_task(self._maintenance_loop(), name="queue-maintenance")
        logger.info(
            f"Worker pool started: concurrency={self.concurrency}, "
            f"limit={self.limiter.max_jobs}/{self.limiter.window_seconds}s"
        )

    async def stop(self, timeout: float = 30.0) -> None:
        """
        Stop pulling new jobs and wait for in-flight jobs to finish.

        Jobs still running after ``timeout`` are cancelled; their locks expire
        and the queue recovers them as stalled.
        """
        if not self._running:
            return
        self._running = False
        logger.info(f"Stopping worker pool ({self._in_flight} job(s) in flight)")

        tasks = list(self._workers)
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} worker(s) after {timeout}s")
                await asyncio.gather(*pending, return_exceptions=True)

        if self._maintenance:
            self._maintenance.cancel()
            await asyncio.gather(self._maintenance, return_exceptions=True)

        self._workers = []
        self._maintenance = None
        logger.info("Worker pool stopped")

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "concurrency": self.concurrency,
            "in_flight": self._in_flight,
            "completed": self.completed_count,
            "failed": self.failed_count,
            "retried": self.retried_count,
            "abandoned": self.abandoned_count,
            "rate_limit": f"{self.limiter.max_jobs}/{self.limiter.window_seconds}s",
        }

    async def _worker_loop(self, index: int) -> None:
        while self._running:
            try:
                slot = await self.limiter.acquire()
                queued = await self.queue.pull(self.poll_timeout)
                if queued is None:
                    await self.limiter.refund(slot)
                    continue
                await self.run_job(queued)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Worker {index} error: {e}")
                await asyncio.sleep(1)

    async def run_job(self, queued: QueuedJob) -> None:
        """
        Process one pulled job and record the outcome on the queue.

        If the job lock is lost while processing, the attempt is cancelled and
        no outcome is recorded; stalled recovery hands the job out again.
        """
        self._in_flight += 1
        lock_lost = asyncio.Event()
        renewer = asyncio.create_task(self._renew_lock(queued, lock_lost))
        lost_waiter = asyncio.create_task(lock_lost.wait())
        processing = asyncio.create_task(self.processor.process(
            queued.job,
            attempt=queued.attempt,
            is_final_attempt=queued.is_final_attempt,
            lease=lambda: self.queue.extend_lock(queued),
        ))
        start = time.perf_counter()
        try:
            await asyncio.wait({processing, lost_waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not processing.done():
                processing.cancel()
                await asyncio.gather(processing, return_exceptions=True)
                self._abandon(queued)
                return

            try:
                order = processing.result()
            except JobLockLostError:
                self._abandon(queued)
                return
            except Exception as e:
                outcome = await self.queue.fail(queued, str(e), retry=is_retryable(e))
                if outcome == JobState.DELAYED:
                    self.retried_count += 1
                elif outcome == JobState.FAILED:
                    self.failed_count += 1
                return

            duration_ms = (time.perf_counter() - start) * 1000
            if order.status == OrderStatus.FAILED:
                recorded = await self.queue.fail(queued, order.error or "order failed", retry=False) is not None
            else:
                recorded = await self.queue.complete(queued, {"status": order.status.value, "txHash": order.tx_hash})
            if not recorded:
                self._abandon(queued)
                return

            if order.status == OrderStatus.FAILED:
                self.failed_count += 1
            else:
                self.completed_count += 1
            logger.info(f"Job {queued.job_id} finished as {order.status.value} in {duration_ms:.0f}ms")
        finally:
            for task in (renewer, lost_waiter, processing):
                if not task.done():
                    task.cancel()
            await asyncio.gather(renewer, lost_waiter, processing, return_exceptions=True)
            self._in_flight -= 1

    def _abandon(self, queued: QueuedJob) -> None:
        self.abandoned_count += 1
        logger.error(f"Lock lost on job {queued.job_id}, abandoned attempt {queued.attempt}")

    async def _renew_lock(self, queued: QueuedJob, lock_lost: asyncio.Event) -> None:
        """
        Keep the job lock alive until cancelled.

        Sets ``lock_lost`` once the lock is held by someone else or renewals
        have failed for longer than the lock lifetime.
        """
        loop = asyncio.get_running_loop()
        interval = max(self.queue.lock_seconds / 2, 0.05)
        renewed_at = loop.time()
        while True:
            await asyncio.sleep(interval)
            try:
                held = await self.queue.extend_lock(queued)
            except Exception as e:
                logger.error(f"Failed to renew lock on job {queued.job_id}: {e}")
                held = loop.time() - renewed_at < self.queue.lock_seconds
            else:
                if held:
                    renewed_at = loop.time()
            if not held:
                logger.warning(f"Lost lock on job {queued.job_id}")
                lock_lost.set()
                return

    async def _maintenance_loop(self) -> None:
        next_reconcile = time.monotonic() + self.reconcile_interval
        while self._running:
            try:
                await self.queue.promote_delayed()

                for queued, outcome in await self.queue.recover_stalled():
                    if outcome == JobState.FAILED:
                        self.failed_count += 1
                        error = QueueExhaustedError(queued.job_id, queued.attempt, "job stalled")
                        await self.processor.fail(queued.job_id, str(error))

                if self.reconciler and time.monotonic() >= next_reconcile:
                    next_reconcile = time.monotonic() + self.reconcile_interval
                    await self.reconciler.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Queue maintenance error: {e}")

            await asyncio.sleep(self.maintenance_interval)
