"""
Observability Package

  TracingConfig   — LangSmith initialisation
  traced          — decorator for timing async pipeline stages
"""

from cv_worker.observability.tracing import TracingConfig, traced

__all__ = ["TracingConfig", "traced"]
