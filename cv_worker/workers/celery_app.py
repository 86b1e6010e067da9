"""
Celery Application Factory

Configures the Celery app for asynchronous CV analysis.
Broker: Redis (redis://) by default; RabbitMQ (amqp://) works unchanged.
Result backend: Redis (optional — job state lives in the cvs table).

Queue topology:
  cv-processing   — CV analysis jobs from the upload flow
  cv-maintenance  — requeue scanner + health checks

Privacy note: task arguments are logged by Celery. Never pass file bytes or
extracted text in a payload — only the storage path and job metadata.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import (
    after_setup_logger,
    task_failure,
    task_postrun,
    task_prerun,
    worker_process_shutdown,
)
from kombu import Exchange, Queue

from cv_worker.core.config import Settings, get_settings
from cv_worker.core.logging_config import configure_logging

logger = logging.getLogger(__name__)

MAINTENANCE_QUEUE = "cv-maintenance"


def create_celery_app(settings: Settings) -> Celery:
    app = Celery("cv_worker")

    exchange = Exchange("cv", type="direct", durable=True)

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=(
            Queue(settings.queue_name, exchange=exchange, routing_key=settings.queue_name, durable=True),
            Queue(MAINTENANCE_QUEUE, exchange=exchange, routing_key=MAINTENANCE_QUEUE, durable=True),
        ),
        task_routes={
            "cv_worker.workers.tasks.process_cv":         {"queue": settings.queue_name},
            "cv_worker.workers.tasks.requeue_stale_jobs": {"queue": MAINTENANCE_QUEUE},
            "cv_worker.workers.tasks.health_check":       {"queue": MAINTENANCE_QUEUE},
        },
        task_default_queue=settings.queue_name,
        task_default_exchange="cv",
        task_default_routing_key=settings.queue_name,

        # --- Reliability ---
        task_acks_late=True,            # ack only after the attempt finishes
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,   # one job at a time per worker process
        worker_concurrency=settings.worker_concurrency,

        # --- Retries ---
        task_max_retries=settings.task_max_retries,
        task_default_retry_delay=int(settings.retry_backoff_base),

        # --- Timeouts: the in-process deadline fires first, these are backstops ---
        task_soft_time_limit=int(settings.job_deadline_seconds) + 30,
        task_time_limit=int(settings.job_deadline_seconds) + 60,

        # --- Result TTL ---
        result_expires=3600,   # state of record is in PostgreSQL, not Celery results

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (requeue scanner) ---
        beat_schedule={
            "requeue-stale-pending-cvs": {
                "task":     "cv_worker.workers.tasks.requeue_stale_jobs",
                "schedule": 60,  # every 60 seconds
                "options":  {"queue": MAINTENANCE_QUEUE},
            },
        },

        # --- Worker ---
        worker_max_tasks_per_child=200,   # recycle workers to prevent memory bloat
    )

    app.autodiscover_tasks(["cv_worker.workers"])

    return app


celery_app = create_celery_app(get_settings())


# ---------------------------------------------------------------------------
# Celery signals: structured logging for every attempt
# ---------------------------------------------------------------------------

@after_setup_logger.connect
def on_setup_logger(logger, **_):
    configure_logging(get_settings(), logger)


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s retries=%s",
        task_id, task.name, kwargs.get("document_id", "?"), task.request.retries,
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, kwargs.get("document_id", "?"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "?"), exception,
    )


@worker_process_shutdown.connect
def on_worker_process_shutdown(**_):
    from cv_worker.workers.tasks import shutdown_worker_context
    shutdown_worker_context()
