"""
Order job queue, worker pool and reconciliation.
"""

from swap_engine.jobs.queue import JobQueue, JobHandle, JobState, QueuedJob
from swap_engine.jobs.rate_limiter import RateLimiter
from swap_engine.jobs.worker import WorkerPool
from swap_engine.jobs.reconcile import OrderReconciler

__all__ = [
    "JobQueue",
    "JobHandle",
    "JobState",
    "QueuedJob",
    "RateLimiter",
    "WorkerPool",
    "OrderReconciler",
]
