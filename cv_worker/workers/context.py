"""
Worker context — explicit initialisation instead of import-time side effects

init_worker() validates settings, builds every collaborator once and returns
them in a WorkerContext. Celery tasks fetch it through get_worker_context(),
which initialises lazily inside each worker child process, so no DB pool or
HTTP client is ever created before fork.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine

from cv_worker.analysis.normalizer import ResponseNormalizer
from cv_worker.core.config import Settings, get_settings
from cv_worker.core.errors import ConfigurationError
from cv_worker.db.session import create_engine, create_session_factory
from cv_worker.llm.client import AnalysisClient
from cv_worker.observability.tracing import TracingConfig
from cv_worker.persistence.store import SqlAlchemyJobStore
from cv_worker.processing.extractor import TextExtractor
from cv_worker.storage.s3 import DocumentStorage
from cv_worker.workers.consumer import QueueConsumer, RetryPolicy
from cv_worker.workers.processor import JobProcessor

logger = logging.getLogger(__name__)

_SUPPORTED_PROVIDERS = ("openai", "azure_openai")


def validate_settings(settings: Settings) -> None:
    """Fail fast on configuration the worker cannot run without."""
    problems: list[str] = []

    if not settings.database_url:
        problems.append("DATABASE_URL is required")
    if not settings.s3_bucket:
        problems.append("S3_BUCKET is required")

    if settings.llm_provider not in _SUPPORTED_PROVIDERS:
        problems.append(f"LLM_PROVIDER must be one of {', '.join(_SUPPORTED_PROVIDERS)}")
    elif settings.llm_provider == "openai" and not settings.openai_api_key:
        problems.append("OPENAI_API_KEY is required when LLM_PROVIDER=openai")
    elif settings.llm_provider == "azure_openai":
        if not settings.azure_openai_api_key:
            problems.append("AZURE_OPENAI_API_KEY is required when LLM_PROVIDER=azure_openai")
        if not settings.azure_openai_endpoint:
            problems.append("AZURE_OPENAI_ENDPOINT is required when LLM_PROVIDER=azure_openai")

    if settings.ai_timeout_seconds <= 0:
        problems.append("AI_TIMEOUT_SECONDS must be positive")
    if settings.worker_concurrency < 1:
        problems.append("WORKER_CONCURRENCY must be at least 1")

    if problems:
        raise ConfigurationError("; ".join(problems))


@dataclass
class WorkerContext:
    settings:     Settings
    engine:       AsyncEngine
    store:        SqlAlchemyJobStore
    processor:    JobProcessor
    consumer:     QueueConsumer
    retry_policy: RetryPolicy


def init_worker(settings: Settings | None = None) -> WorkerContext:
    settings = settings or get_settings()
    validate_settings(settings)
    TracingConfig.init(settings)

    engine = create_engine(settings)
    store = SqlAlchemyJobStore(create_session_factory(engine))

    processor = JobProcessor(
        storage=DocumentStorage.from_settings(settings),
        extractor=TextExtractor(settings.allowed_content_types),
        client=AnalysisClient.from_settings(settings),
        normalizer=ResponseNormalizer(),
        store=store,
        min_text_length=settings.min_text_length,
        max_prompt_chars=settings.max_prompt_chars,
        deadline_seconds=settings.job_deadline_seconds,
        persistence_retry_attempts=settings.persistence_retry_attempts,
        persistence_retry_delay=settings.persistence_retry_delay,
    )

    logger.info(
        "Worker initialised | env=%s provider=%s model=%s bucket=%s concurrency=%d",
        settings.app_env, settings.llm_provider, settings.llm_model,
        settings.s3_bucket, settings.worker_concurrency,
    )
    return WorkerContext(
        settings=settings,
        engine=engine,
        store=store,
        processor=processor,
        consumer=QueueConsumer(processor, store, concurrency=settings.worker_concurrency),
        retry_policy=RetryPolicy.from_settings(settings),
    )


@lru_cache(maxsize=1)
def get_worker_context() -> WorkerContext:
    return init_worker()
