"""
Pipeline error taxonomy.

Every failure the worker can record on a cvs row is a PipelineError.
`stage` names the pipeline step that failed; `retryable` tells the queue
consumer whether a fresh attempt can possibly succeed; `message` is the
human-readable text persisted in cvs.error_message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cv_worker.schemas.analysis import AnalysisResult


class PipelineError(Exception):
    stage:     str  = "processing"
    retryable: bool = True

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StorageError(PipelineError):
    stage = "storage"


class StorageNotFound(StorageError):
    retryable = False


class StorageAccessDenied(StorageError):
    retryable = False


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class UnsupportedFormat(PipelineError):
    stage = "extraction"
    retryable = False

    def __init__(self, content_type: str) -> None:
        super().__init__(f"Unsupported file type: {content_type or 'unknown'}")
        self.content_type = content_type


class ExtractionFailed(PipelineError):
    stage = "extraction"


class InsufficientContent(PipelineError):
    stage = "extraction"
    retryable = False

    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(
            f"Insufficient text extracted from CV ({length} characters, minimum {minimum})"
        )
        self.length  = length
        self.minimum = minimum


# ---------------------------------------------------------------------------
# Inference
# ---------------------------------------------------------------------------

class ServiceUnavailable(PipelineError):
    stage = "inference"


class RateLimited(PipelineError):
    stage = "inference"

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InferenceTimeout(PipelineError):
    stage = "inference"

    def __init__(self, timeout: float) -> None:
        super().__init__(f"AI service did not respond within {timeout:g}s")
        self.timeout = timeout


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------

class NormalizationFailed(PipelineError):
    stage = "response"

    def __init__(self, message: str, degraded_result: "AnalysisResult | None" = None) -> None:
        super().__init__(message)
        self.degraded_result = degraded_result


# ---------------------------------------------------------------------------
# Persistence / processing
# ---------------------------------------------------------------------------

class PersistenceFailed(PipelineError):
    stage = "persistence"


class JobDeadlineExceeded(PipelineError):
    def __init__(self, deadline: float) -> None:
        super().__init__(f"Processing exceeded the {deadline:g}s deadline")
        self.deadline = deadline


class ConfigurationError(RuntimeError):
    """Worker settings are incomplete for the selected providers."""
