"""
Queue Consumer — hands jobs to the processor and owns the retry decision

The broker (Celery + Redis/RabbitMQ) provides durable, at-least-once
delivery. This layer adds:

  • the completed-guard: a redelivered job whose row is already
    'completed' is acknowledged without doing any work;
  • RetryPolicy: whether a failed attempt should be re-queued, and after
    how long. Fatal errors (unsupported format, not enough text, missing or
    forbidden file) are never retried;
  • process_many(): bounded-concurrency execution for local batch runs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from cv_worker.core.config import Settings
from cv_worker.core.errors import PipelineError, RateLimited
from cv_worker.persistence.store import JobStore
from cv_worker.schemas.analysis import Job, JobStatus
from cv_worker.workers.processor import JobProcessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_retries   re-queues after the first attempt
    backoff_base  delay before the first retry, doubled each time
    backoff_max   upper bound on any delay (including Retry-After)
    """
    max_retries:  int   = 3
    backoff_base: float = 30.0
    backoff_max:  float = 600.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.task_max_retries,
            backoff_base=settings.retry_backoff_base,
            backoff_max=settings.retry_backoff_max,
        )

    def should_retry(self, exc: BaseException, retries_done: int) -> bool:
        if retries_done >= self.max_retries:
            return False
        if isinstance(exc, PipelineError):
            return exc.retryable
        return isinstance(exc, Exception)

    def countdown(self, exc: BaseException, retries_done: int) -> float:
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            return min(exc.retry_after, self.backoff_max)
        return min(self.backoff_base * (2 ** retries_done), self.backoff_max)


class QueueConsumer:

    def __init__(self, processor: JobProcessor, store: JobStore, concurrency: int = 4) -> None:
        self._processor   = processor
        self._store       = store
        self._concurrency = max(1, concurrency)

    async def handle(self, job: Job) -> dict[str, Any]:
        """Run one attempt. Raises whatever the processor raised."""
        current = await self._store.get_status(job.job_id)

        if current is None:
            logger.error("CV record not found | job=%s", job.job_id)
            return {"status": "not_found", "job_id": str(job.job_id)}

        if current == JobStatus.COMPLETED:
            logger.warning("CV already completed, skipping | job=%s", job.job_id)
            return {"status": "skipped", "job_id": str(job.job_id), "current_status": current.value}

        result = await self._processor.process(job)
        return {
            "status":   JobStatus.COMPLETED.value,
            "job_id":   str(job.job_id),
            "overall":  result.scores.overall,
            "degraded": result.degraded,
        }

    async def process_many(self, jobs: Iterable[Job]) -> list[dict[str, Any] | BaseException]:
        """
        Run jobs concurrently, at most `concurrency` at a time.
        Results are in input order; failures are returned, not raised.
        """
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(job: Job) -> dict[str, Any]:
            async with semaphore:
                return await self.handle(job)

        return await asyncio.gather(*(_one(job) for job in jobs), return_exceptions=True)
