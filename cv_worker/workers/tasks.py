"""
Celery Tasks — CV Analysis Pipeline

Task: process_cv
  Thin adapter: task kwargs → Job → QueueConsumer.handle().
  On failure the injected RetryPolicy decides between self.retry() with
  back-off and letting the failure stand. The cvs row already carries
  status=error either way.

Task: requeue_stale_jobs
  Beat task — re-enqueues rows stuck in 'pending' (broker outage during the
  upload, lost message) for longer than STALE_PENDING_MINUTES.

Task: health_check
  Database ping for monitoring.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Coroutine, TypeVar

from celery import Task
from pydantic import ValidationError

from cv_worker.db.session import check_db_health
from cv_worker.schemas.analysis import Job
from cv_worker.workers.celery_app import celery_app
from cv_worker.workers.context import get_worker_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Async task helper
# One event loop per worker process: the DB pool binds to the loop that
# first used it, so tasks must not each spin up a fresh loop.
# ---------------------------------------------------------------------------

_loop: asyncio.AbstractEventLoop | None = None


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Execute an async coroutine from a synchronous Celery task."""
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop.run_until_complete(coro)


def shutdown_worker_context() -> None:
    """Dispose the DB pool of this process, if one was ever created."""
    if get_worker_context.cache_info().currsize == 0:
        return
    ctx = get_worker_context()
    run_async(ctx.engine.dispose())
    get_worker_context.cache_clear()


def job_to_task_kwargs(job: Job) -> dict[str, str]:
    return {
        "document_id":  str(job.document_id),
        "owner_id":     str(job.owner_id),
        "storage_path": job.storage_path,
        "content_type": job.declared_content_type,
        "display_name": job.display_name,
    }


def enqueue_job(job: Job, countdown: float = 0) -> None:
    process_cv.apply_async(kwargs=job_to_task_kwargs(job), countdown=countdown)


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name="cv_worker.workers.tasks.process_cv",
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_cv(
    self: Task,
    *,
    document_id:  str,
    owner_id:     str,
    storage_path: str,
    content_type: str,
    display_name: str = "",
) -> dict[str, Any]:
    """Run one analysis attempt for a CV."""
    try:
        job = Job(
            document_id=document_id,
            owner_id=owner_id,
            storage_path=storage_path,
            declared_content_type=content_type,
            display_name=display_name,
        )
    except ValidationError as exc:
        # Nothing to record against: the payload does not identify a row
        logger.error("Rejected malformed job payload | doc=%s error=%s", document_id, exc)
        return {"status": "rejected", "reason": "invalid_payload"}

    ctx = get_worker_context()
    try:
        return run_async(ctx.consumer.handle(job))
    except Exception as exc:
        retries = self.request.retries
        if not ctx.retry_policy.should_retry(exc, retries):
            logger.error(
                "Giving up on CV | doc=%s retries=%d error=%s", document_id, retries, exc,
            )
            raise
        countdown = ctx.retry_policy.countdown(exc, retries)
        logger.warning(
            "Retrying CV | doc=%s retry=%d/%d countdown=%.0fs error=%s",
            document_id, retries + 1, ctx.retry_policy.max_retries, countdown, exc,
        )
        raise self.retry(exc=exc, countdown=countdown, max_retries=ctx.retry_policy.max_retries)


# ---------------------------------------------------------------------------
# Requeue scanner, run every 60 seconds by Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="cv_worker.workers.tasks.requeue_stale_jobs",
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def requeue_stale_jobs() -> dict[str, int]:
    ctx = get_worker_context()
    stale = run_async(
        ctx.store.find_stale_pending(timedelta(minutes=ctx.settings.stale_pending_minutes))
    )
    for job in stale:
        enqueue_job(job, countdown=5)
        logger.info("Re-queued stale CV | doc=%s owner=%s", job.document_id, job.owner_id)
    return {"requeued": len(stale)}


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="cv_worker.workers.tasks.health_check")
def health_check() -> dict[str, Any]:
    ctx = get_worker_context()
    db = run_async(check_db_health(ctx.engine))
    return {"status": "ok" if db["status"] == "ok" else "degraded", "worker": "healthy", "db": db}
