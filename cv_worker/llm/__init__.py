"""
LLM Package

Provides the inference-service client used by the worker:
  - OpenAI        (gpt-4o-mini by default)
  - Azure OpenAI  (same models, GDPR-compliant endpoint)

Public API::

    from cv_worker.llm import AnalysisClient

    client = AnalysisClient.from_settings(settings)
    raw_text = await client.invoke(prompt)
"""

from cv_worker.llm.client import AnalysisClient, build_chat_model

__all__ = [
    "AnalysisClient",
    "build_chat_model",
]
