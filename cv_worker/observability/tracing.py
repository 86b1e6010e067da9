"""
Observability Tracing — LangSmith + stage timing

LangSmith (hosted):
  - Activated by LANGCHAIN_TRACING_V2 / LANGCHAIN_API_KEY / LANGCHAIN_PROJECT.
  - LangChain reads them on import; TracingConfig.init() copies them from
    Settings when they are not already in the environment.
  - Every AnalysisClient call then shows up as a run in the project.

Decorator `@traced(name)`:
  Times any async pipeline stage and logs errors. Always active, regardless
  of whether LangSmith is configured.
"""

from __future__ import annotations

import functools
import logging
import os
import time
from typing import Any, Callable, Coroutine, TypeVar

from cv_worker.core.config import Settings

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])


class TracingConfig:
    """
    Call once at worker startup::

        TracingConfig.init(settings)
    """

    _initialised: bool = False

    @classmethod
    def init(cls, settings: Settings) -> None:
        if cls._initialised:
            return
        cls._initialised = True

        if settings.langsmith_api_key and not os.environ.get("LANGCHAIN_API_KEY"):
            os.environ["LANGCHAIN_TRACING_V2"] = "true"
            os.environ["LANGCHAIN_API_KEY"]    = settings.langsmith_api_key
            os.environ["LANGCHAIN_PROJECT"]    = settings.langsmith_project
            logger.info("LangSmith tracing enabled | project=%s", settings.langsmith_project)
        elif os.environ.get("LANGCHAIN_TRACING_V2") == "true":
            logger.info(
                "LangSmith tracing active (from env) | project=%s",
                os.environ.get("LANGCHAIN_PROJECT", "default"),
            )
        else:
            logger.debug("LangSmith tracing disabled (LANGCHAIN_TRACING_V2 not set)")


def traced(name: str | None = None) -> Callable[[F], F]:
    """
    Instrument an async function with timing and error logging.

        @traced("download")
        async def _download(self, job: Job) -> bytes: ...
    """
    def decorator(func: F) -> F:
        span_name = name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                elapsed_ms = (time.perf_counter() - t0) * 1000
                logger.warning(
                    "trace | span=%s elapsed_ms=%.1f error=%s: %s",
                    span_name, elapsed_ms, type(exc).__name__, exc,
                )
                raise
            elapsed_ms = (time.perf_counter() - t0) * 1000
            logger.debug("trace | span=%s elapsed_ms=%.1f ok", span_name, elapsed_ms)
            return result

        return wrapper  # type: ignore[return-value]
    return decorator
