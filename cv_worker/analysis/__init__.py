"""
CV Analysis Package

  prompts.py     Deterministic prompt rendering (the schema contract sent to the model)
  normalizer.py  Untrusted model output → validated AnalysisResult
"""

from cv_worker.analysis.normalizer import ResponseNormalizer, strip_code_fences
from cv_worker.analysis.prompts import build_prompt

__all__ = [
    "ResponseNormalizer",
    "build_prompt",
    "strip_code_fences",
]
