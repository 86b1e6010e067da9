"""
Unit Tests — Celery tasks and worker wiring
═══════════════════════════════════════════
Tests for cv_worker/workers/tasks.py, celery_app.py and context.py

Tasks are called directly (synchronously, in-process) with
get_worker_context() patched to a mocked WorkerContext; the broker is the
in-memory transport configured in conftest.py.

Coverage:
  ✅ process_cv builds a Job and delegates to QueueConsumer.handle
  ✅ Malformed payload is rejected without touching the context
  ✅ Retryable failure → self.retry() with the policy's countdown
  ✅ Fatal failure / exhausted retries → exception re-raised
  ✅ requeue_stale_jobs re-enqueues every stale job
  ✅ Queue routing and reliability settings
  ✅ validate_settings reports every missing provider setting
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from celery.exceptions import Retry

from cv_worker.core.config import Settings
from cv_worker.core.errors import ConfigurationError, RateLimited, UnsupportedFormat
from cv_worker.workers.consumer import RetryPolicy
from cv_worker.workers.context import validate_settings


@pytest.fixture
def ctx():
    context = MagicMock()
    context.consumer.handle = AsyncMock(return_value={"status": "completed"})
    context.retry_policy = RetryPolicy(max_retries=3, backoff_base=30, backoff_max=600)
    context.settings = Settings()
    return context


@pytest.fixture
def task_kwargs(test_document_id, test_owner_id) -> dict:
    return {
        "document_id":  str(test_document_id),
        "owner_id":     str(test_owner_id),
        "storage_path": f"{test_owner_id}/{test_document_id}.pdf",
        "content_type": "application/pdf",
        "display_name": "jane_doe_cv.pdf",
    }


# ─────────────────────────────────────────────────────────────────────────────
# process_cv
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.worker
class TestProcessCvTask:

    def test_delegates_to_consumer(self, ctx, task_kwargs, test_document_id):
        from cv_worker.workers.tasks import process_cv

        with patch("cv_worker.workers.tasks.get_worker_context", return_value=ctx):
            result = process_cv(**task_kwargs)

        assert result == {"status": "completed"}
        job = ctx.consumer.handle.call_args.args[0]
        assert job.job_id == test_document_id
        assert job.declared_content_type == "application/pdf"

    def test_malformed_payload_is_rejected(self, ctx, task_kwargs):
        from cv_worker.workers.tasks import process_cv

        with patch("cv_worker.workers.tasks.get_worker_context", return_value=ctx) as get_ctx:
            result = process_cv(**dict(task_kwargs, document_id="not-a-uuid"))

        assert result["status"] == "rejected"
        get_ctx.assert_not_called()

    def test_retryable_failure_schedules_retry(self, ctx, task_kwargs):
        from cv_worker.workers.tasks import process_cv

        ctx.consumer.handle.side_effect = RateLimited("slow down", retry_after=20)

        with patch("cv_worker.workers.tasks.get_worker_context", return_value=ctx), \
             patch("celery.app.task.Task.retry", return_value=Retry()) as retry:
            with pytest.raises(Retry):
                process_cv(**task_kwargs)

        assert retry.call_args.kwargs["countdown"] == 20
        assert retry.call_args.kwargs["max_retries"] == 3
        assert isinstance(retry.call_args.kwargs["exc"], RateLimited)

    def test_fatal_failure_is_not_retried(self, ctx, task_kwargs):
        from cv_worker.workers.tasks import process_cv

        ctx.consumer.handle.side_effect = UnsupportedFormat("image/png")

        with patch("cv_worker.workers.tasks.get_worker_context", return_value=ctx), \
             patch("celery.app.task.Task.retry") as retry:
            with pytest.raises(UnsupportedFormat):
                process_cv(**task_kwargs)

        retry.assert_not_called()


# ─────────────────────────────────────────────────────────────────────────────
# requeue_stale_jobs
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.worker
class TestRequeueStaleJobs:

    def test_every_stale_job_is_enqueued(self, ctx, make_job):
        from cv_worker.workers.tasks import requeue_stale_jobs

        stale = [make_job(document_id=uuid.uuid4()) for _ in range(2)]
        ctx.store.find_stale_pending = AsyncMock(return_value=stale)

        with patch("cv_worker.workers.tasks.get_worker_context", return_value=ctx), \
             patch("cv_worker.workers.tasks.enqueue_job") as enqueue:
            result = requeue_stale_jobs()

        assert result == {"requeued": 2}
        assert [c.args[0] for c in enqueue.call_args_list] == stale

    def test_task_kwargs_round_trip(self, make_job):
        from cv_worker.workers.tasks import job_to_task_kwargs

        job = make_job()
        kwargs = job_to_task_kwargs(job)
        assert kwargs["document_id"] == str(job.document_id)
        assert kwargs["content_type"] == job.declared_content_type


# ─────────────────────────────────────────────────────────────────────────────
# Celery configuration and settings validation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.worker
class TestWorkerConfiguration:

    def test_reliability_settings(self):
        from cv_worker.workers.celery_app import create_celery_app

        app = create_celery_app(Settings(queue_name="cv-processing", worker_concurrency=2))

        assert app.conf.task_acks_late is True
        assert app.conf.worker_prefetch_multiplier == 1
        assert app.conf.worker_concurrency == 2
        assert app.conf.task_routes["cv_worker.workers.tasks.process_cv"] == {"queue": "cv-processing"}

    def test_valid_openai_settings(self):
        validate_settings(Settings(llm_provider="openai", openai_api_key="sk-test"))

    def test_missing_openai_key(self):
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            validate_settings(Settings(llm_provider="openai", openai_api_key=""))

    def test_azure_requires_key_and_endpoint(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_settings(Settings(llm_provider="azure_openai", azure_openai_api_key="", azure_openai_endpoint=""))
        assert "AZURE_OPENAI_API_KEY" in str(exc_info.value)
        assert "AZURE_OPENAI_ENDPOINT" in str(exc_info.value)

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="LLM_PROVIDER"):
            validate_settings(Settings(llm_provider="bedrock"))
