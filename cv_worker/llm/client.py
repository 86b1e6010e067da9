"""
Analysis Client — single entry point for the CV scoring model

  ┌──────────────────────────────────────────────┐
  │  AnalysisClient.invoke(prompt)               │
  │       │                                      │
  │       ▼                                      │
  │  build_chat_model()   ← provider from config │
  │       │                                      │
  │       ▼                                      │
  │  asyncio.wait_for(llm.ainvoke, timeout)      │
  │       │                                      │
  │       ▼                                      │
  │  provider error → ServiceUnavailable         │
  │                   RateLimited                │
  │                   InferenceTimeout           │
  └──────────────────────────────────────────────┘

The client does not retry. A rate-limit is surfaced distinctly (with the
provider's Retry-After when present) so the queue can back off instead of
treating it as a hard failure.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_core.runnables import Runnable

from cv_worker.core.config import Settings
from cv_worker.core.errors import InferenceTimeout, RateLimited, ServiceUnavailable

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Provider error classification
# ---------------------------------------------------------------------------

_RATE_LIMIT_EXCEPTION_TYPES = (
    "RateLimitError",
    "TooManyRequests",
    "ResourceExhausted",
)

_TIMEOUT_EXCEPTION_TYPES = (
    "APITimeoutError",
    "ConnectTimeout",
    "ReadTimeout",
)


def _status_code(exc: Exception) -> int | None:
    code = getattr(exc, "status_code", None)
    if code is None:
        code = getattr(getattr(exc, "response", None), "status_code", None)
    return code if isinstance(code, int) else None


def _is_rate_limited(exc: Exception) -> bool:
    name = type(exc).__name__
    return _status_code(exc) == 429 or any(name.endswith(r) for r in _RATE_LIMIT_EXCEPTION_TYPES)


def _is_timeout(exc: Exception) -> bool:
    name = type(exc).__name__
    return any(name.endswith(t) for t in _TIMEOUT_EXCEPTION_TYPES)


def _retry_after(exc: Exception) -> float | None:
    """Seconds from the provider's Retry-After header, if it sent one."""
    headers = getattr(getattr(exc, "response", None), "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after") or headers.get("Retry-After")
    try:
        return max(0.0, float(value)) if value is not None else None
    except (TypeError, ValueError):
        return None


def _content_text(content) -> str:
    """AIMessage.content is a str or a list of content blocks."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


# ---------------------------------------------------------------------------
# Model construction
# ---------------------------------------------------------------------------

def build_chat_model(settings: Settings) -> Runnable:
    """Instantiate the LangChain chat model for the configured provider."""
    llm = _provider_model(settings)
    if settings.llm_json_mode:
        return llm.bind(response_format={"type": "json_object"})
    return llm


def _provider_model(settings: Settings) -> BaseChatModel:
    if settings.llm_provider == "openai":
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=settings.llm_model,
            api_key=settings.openai_api_key,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.ai_timeout_seconds,
            max_retries=0,
        )

    if settings.llm_provider == "azure_openai":
        from langchain_openai import AzureChatOpenAI
        return AzureChatOpenAI(
            azure_deployment=settings.azure_openai_deployment,
            azure_endpoint=settings.azure_openai_endpoint,
            api_key=settings.azure_openai_api_key,   # type: ignore[arg-type]
            api_version=settings.azure_openai_api_version,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.ai_timeout_seconds,
            max_retries=0,
        )

    raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

@dataclass
class InvocationStats:
    """Per-call accounting, logged after each successful invoke."""
    model:         str
    input_chars:   int
    output_chars:  int
    latency_ms:    float

    @property
    def input_tokens(self) -> int:
        # 4 chars ≈ 1 token (OpenAI heuristic)
        return max(1, self.input_chars // 4)

    @property
    def output_tokens(self) -> int:
        return max(1, self.output_chars // 4)


class AnalysisClient:
    """
    Sends a rendered prompt to the inference service and returns raw text.

    Holds no per-call state, so one instance is shared across concurrent jobs.
    """

    def __init__(
        self,
        llm:        Runnable,
        model_name: str,
        timeout:    float = 30.0,
    ) -> None:
        self._llm        = llm
        self._model_name = model_name
        self._timeout    = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalysisClient":
        model_name = (
            settings.azure_openai_deployment
            if settings.llm_provider == "azure_openai"
            else settings.llm_model
        )
        return cls(
            llm=build_chat_model(settings),
            model_name=model_name,
            timeout=settings.ai_timeout_seconds,
        )

    async def invoke(self, prompt: str) -> str:
        t0 = time.perf_counter()
        try:
            message = await asyncio.wait_for(
                self._llm.ainvoke([HumanMessage(content=prompt)]),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("AnalysisClient | model=%s timed out after %.1fs", self._model_name, self._timeout)
            raise InferenceTimeout(self._timeout) from exc
        except Exception as exc:
            raise self._classify(exc) from exc

        text = _content_text(message.content)
        stats = InvocationStats(
            model=self._model_name,
            input_chars=len(prompt),
            output_chars=len(text),
            latency_ms=(time.perf_counter() - t0) * 1000,
        )
        logger.info(
            "AnalysisClient | model=%s tokens_in≈%d tokens_out≈%d latency_ms=%.1f",
            stats.model, stats.input_tokens, stats.output_tokens, stats.latency_ms,
        )
        return text

    def _classify(self, exc: Exception) -> Exception:
        name = type(exc).__name__
        if _is_rate_limited(exc):
            retry_after = _retry_after(exc)
            logger.warning(
                "AnalysisClient | model=%s rate limited retry_after=%s", self._model_name, retry_after,
            )
            return RateLimited(f"AI service rate limit exceeded: {exc}", retry_after=retry_after)

        if _is_timeout(exc):
            logger.warning("AnalysisClient | model=%s provider timeout: %s", self._model_name, exc)
            return InferenceTimeout(self._timeout)

        logger.error("AnalysisClient | model=%s provider error %s: %s", self._model_name, name, exc)
        return ServiceUnavailable(f"AI service unavailable ({name}): {exc}")
