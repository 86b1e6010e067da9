"""
Job Processor — one attempt of the CV analysis pipeline

  1. Update cvs.status → processing          (persisted before any work)
  2. Download the file from storage
  3. Extract text (PDF / DOCX / DOC)
  4. Reject text shorter than min_text_length (no paid AI call on empty input)
  5. Render the prompt
  6. Invoke the AI service
  7. Normalize the response into an AnalysisResult
  8. Update cvs.status → completed with scores + analysis + processed_date

Steps 2-7 run under one deadline. Any failure, including the deadline and
task cancellation, writes status=error with a readable message and then
re-raises so the queue's retry policy decides what happens next. The error
write is the only step retried locally: losing it would leave the row stuck
in 'processing' with no trace of what went wrong.

All per-attempt data lives in local variables; one JobProcessor instance is
safe to share between concurrently running jobs.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from uuid import UUID

from cv_worker.analysis.normalizer import ResponseNormalizer
from cv_worker.analysis.prompts import build_prompt
from cv_worker.core.errors import (
    InsufficientContent,
    JobDeadlineExceeded,
    PersistenceFailed,
    PipelineError,
    UnsupportedFormat,
)
from cv_worker.llm.client import AnalysisClient
from cv_worker.observability.tracing import traced
from cv_worker.persistence.store import JobStore
from cv_worker.processing.extractor import TextExtractor
from cv_worker.schemas.analysis import AnalysisResult, Job, JobStatus
from cv_worker.storage.s3 import DocumentStorage

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Processing was cancelled before completion"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def error_message(exc: BaseException) -> str:
    """Human-readable text for cvs.error_message. Never empty."""
    if isinstance(exc, PipelineError):
        return exc.message
    detail = str(exc).strip()
    return f"Unexpected error ({type(exc).__name__}): {detail}" if detail else f"Unexpected error ({type(exc).__name__})"


class JobProcessor:

    def __init__(
        self,
        storage:    DocumentStorage,
        extractor:  TextExtractor,
        client:     AnalysisClient,
        normalizer: ResponseNormalizer,
        store:      JobStore,
        *,
        min_text_length:            int          = 50,
        max_prompt_chars:           int | None   = None,
        deadline_seconds:           float | None = None,
        persistence_retry_attempts: int          = 3,
        persistence_retry_delay:    float        = 0.5,
    ) -> None:
        self._storage    = storage
        self._extractor  = extractor
        self._client     = client
        self._normalizer = normalizer
        self._store      = store

        self._min_text_length  = min_text_length
        self._max_prompt_chars = max_prompt_chars
        self._deadline         = deadline_seconds
        self._retry_attempts   = max(1, persistence_retry_attempts)
        self._retry_delay      = persistence_retry_delay

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def process(self, job: Job) -> AnalysisResult:
        job_id = job.job_id
        logger.info("Processing CV | job=%s file=%s type=%s", job_id, job.display_name, job.declared_content_type)

        await self._store.update_status(job_id, JobStatus.PROCESSING, {"error_message": None})

        try:
            result = await self._run_with_deadline(job)
            await self._store.update_status(
                job_id,
                JobStatus.COMPLETED,
                {
                    "scores":         result.scores.model_dump(),
                    "analysis":       result.model_dump(mode="json", exclude={"scores"}),
                    "error_message":  None,
                    "processed_date": _utcnow(),
                },
            )
        except asyncio.CancelledError:
            logger.warning("Processing cancelled | job=%s", job_id)
            await asyncio.shield(self._record_failure(job_id, CANCELLED_MESSAGE))
            raise
        except Exception as exc:
            logger.error("Processing failed | job=%s stage=%s error=%s",
                         job_id, getattr(exc, "stage", "unknown"), exc)
            await self._record_failure(job_id, error_message(exc))
            raise

        logger.info(
            "Processing complete | job=%s overall=%.2f ats=%d",
            job_id, result.scores.overall, result.ats_score,
        )
        return result

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_with_deadline(self, job: Job) -> AnalysisResult:
        if self._deadline is None:
            return await self._run(job)
        try:
            return await asyncio.wait_for(self._run(job), timeout=self._deadline)
        except asyncio.TimeoutError as exc:
            raise JobDeadlineExceeded(self._deadline) from exc

    async def _run(self, job: Job) -> AnalysisResult:
        # Unsupported types fail before the download, not after
        if not self._extractor.supports(job.declared_content_type):
            raise UnsupportedFormat(job.declared_content_type)

        content = await self._download(job)
        text = await self._extract(content, job.declared_content_type)

        if len(text) < self._min_text_length:
            raise InsufficientContent(len(text), self._min_text_length)

        prompt = build_prompt(text, max_chars=self._max_prompt_chars)
        raw_text = await self._invoke(prompt)
        return await self._normalize(raw_text)

    @traced("download")
    async def _download(self, job: Job) -> bytes:
        return await self._storage.download(job.storage_path)

    @traced("extract")
    async def _extract(self, content: bytes, content_type: str) -> str:
        # CPU-bound decoders run off the event loop
        return await asyncio.to_thread(self._extractor.extract, content, content_type)

    @traced("invoke")
    async def _invoke(self, prompt: str) -> str:
        return await self._client.invoke(prompt)

    @traced("normalize")
    async def _normalize(self, raw_text: str) -> AnalysisResult:
        return self._normalizer.normalize(raw_text)

    # ------------------------------------------------------------------
    # Failure path
    # ------------------------------------------------------------------

    async def _record_failure(self, job_id: UUID, message: str) -> bool:
        """Write status=error, retrying with exponential back-off. True on success."""
        fields = {"error_message": message, "processed_date": _utcnow()}
        last_error: Exception | None = None

        for attempt in range(self._retry_attempts):
            if attempt > 0:
                delay = self._retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Error-status write retry | job=%s attempt=%d delay=%.2fs error=%s",
                    job_id, attempt, delay, last_error,
                )
                await asyncio.sleep(delay)
            try:
                await self._store.update_status(job_id, JobStatus.ERROR, fields)
                return True
            except PersistenceFailed as exc:
                last_error = exc
            except Exception as exc:
                # The caller re-raises the pipeline error, never this one
                logger.error("Error-status write raised unexpectedly | job=%s error=%r", job_id, exc)
                last_error = exc

        logger.critical(
            "Could not record error status, job left in processing | job=%s attempts=%d error=%s",
            job_id, self._retry_attempts, last_error,
        )
        return False
