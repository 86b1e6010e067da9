"""
Response Normalizer — untrusted model output → AnalysisResult
══════════════════════════════════════════════════════════════

The prompt describes the JSON we want, but nothing forces the model to obey
it. Every field is therefore re-validated here, with explicit default rules:

  1. Strip leading/trailing Markdown code fences.
  2. Parse JSON. Unparseable text, or a payload that is not an object,
     → NormalizationFailed (carrying a degraded placeholder result).
  3. Both "scores" and "analysis" must be objects, else NormalizationFailed.
  4. Each of the six scores: missing / non-numeric / outside [0, 10] → 5.
  5. "overall" missing or defaulted → mean of the five dimension scores.
  6. List fields: absent / not a list → []. Empty strengths and a blank
     summary get a generic fallback sentence. Keywords are de-duplicated.
  7. contact_completeness / ats_score: missing / non-numeric → 50,
     out of range → clamped to [0, 100]. experience_years outside
     [0, 100] → 0.
  8. The AnalysisResult is built once, after every rule has run.

Pydantic constraints on AnalysisResult are the final gate: a result that
leaves this module satisfies every range and shape rule.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from pydantic import ValidationError

from cv_worker.core.errors import NormalizationFailed
from cv_worker.schemas.analysis import (
    DIMENSION_SCORES,
    PERCENT_MAX,
    PERCENT_MIN,
    SCORE_MAX,
    SCORE_MIN,
    SCORE_NAMES,
    AnalysisResult,
    CareerLevel,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

NEUTRAL_SCORE: float = 5
NEUTRAL_PERCENT: int = 50            # 5 on the 0-10 scale
DEFAULT_CAREER_LEVEL = CareerLevel.MID
DEFAULT_EDUCATION_LEVEL = "Not specified"
MAX_EXPERIENCE_YEARS = 100         # anything above is treated as unusable

FALLBACK_SUMMARY = "Professional candidate with relevant experience."
FALLBACK_STRENGTH = "Professional experience demonstrated"

DEGRADED_SUMMARY = (
    "CV analysis could not be completed automatically. "
    "Please review the document for a detailed evaluation."
)
DEGRADED_STRENGTH = "Not assessed"

NARRATIVE_LISTS: tuple[str, ...] = ("strengths", "weaknesses", "recommendations", "industry_fit")
TOP_LEVEL_LISTS: tuple[str, ...] = ("certifications", "languages", "improvement_priority")

_FENCE_OPEN = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?[ \t]*```\s*$")

_CAREER_LEVEL_LOOKUP: dict[str, CareerLevel] = {
    re.sub(r"[^a-z]", "", level.value.lower()): level for level in CareerLevel
}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def strip_code_fences(raw_text: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one."""
    text = _FENCE_OPEN.sub("", raw_text, count=1)
    text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def _is_number(value: Any) -> bool:
    # bool is an int subclass; JSON true/false is never a score
    if isinstance(value, bool):
        return False
    # ints are compared exactly, float() overflows past 1e308
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _score(value: Any) -> float | None:
    """Return the score if usable, None if it must be defaulted."""
    if _is_number(value) and SCORE_MIN <= value <= SCORE_MAX:
        return value
    return None


def _percent(value: Any) -> int:
    if not _is_number(value):
        return NEUTRAL_PERCENT
    return int(round(min(max(value, PERCENT_MIN), PERCENT_MAX)))


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    items = (item.strip() for item in value if isinstance(item, str))
    return [item for item in items if item]


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _non_empty_str(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def _career_level(value: Any) -> CareerLevel:
    if isinstance(value, str):
        key = re.sub(r"[^a-z]", "", value.lower())
        # "Senior-level" / "Mid" / "entry level" all resolve
        for candidate in (key, key + "level", key.removesuffix("level")):
            if candidate in _CAREER_LEVEL_LOOKUP:
                return _CAREER_LEVEL_LOOKUP[candidate]
    return DEFAULT_CAREER_LEVEL


def _experience_years(value: Any) -> int:
    if not _is_number(value) or not 0 <= value <= MAX_EXPERIENCE_YEARS:
        return 0
    return int(value)


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

class ResponseNormalizer:
    """
    Stateless converter from raw model text to a validated AnalysisResult.

    Usage:
        normalizer = ResponseNormalizer()
        result = normalizer.normalize(raw_text)          # raises NormalizationFailed
        result = normalizer.normalize_or_degraded(raw)   # never raises
    """

    def normalize(self, raw_text: str) -> AnalysisResult:
        payload = self._parse(raw_text)

        scores = self._normalize_scores(payload["scores"])
        narrative = self._normalize_narrative(payload["analysis"])

        data = {
            "scores":               scores,
            "analysis":             narrative,
            "keywords":             _unique(_string_list(payload.get("keywords"))),
            "experience_years":     _experience_years(payload.get("experience_years")),
            "education_level":      _non_empty_str(payload.get("education_level"), DEFAULT_EDUCATION_LEVEL),
            "contact_completeness": _percent(payload.get("contact_completeness")),
            "ats_score":            _percent(payload.get("ats_score")),
            **{name: _string_list(payload.get(name)) for name in TOP_LEVEL_LISTS},
            "degraded":             False,
        }

        try:
            return AnalysisResult.model_validate(data)
        except ValidationError as exc:
            # Unreachable unless the default rules above are wrong
            logger.error("Normalizer produced an invalid result: %s", exc)
            raise NormalizationFailed(
                "AI response could not be normalized into a valid analysis",
                degraded_result=self.degraded(),
            ) from exc

    def normalize_or_degraded(self, raw_text: str) -> AnalysisResult:
        try:
            return self.normalize(raw_text)
        except NormalizationFailed as exc:
            return exc.degraded_result or self.degraded()

    @staticmethod
    def degraded() -> AnalysisResult:
        """Structurally complete placeholder, explicitly flagged as degraded."""
        return AnalysisResult.model_validate({
            "scores": {name: NEUTRAL_SCORE for name in SCORE_NAMES},
            "analysis": {
                "summary":         DEGRADED_SUMMARY,
                "strengths":       [DEGRADED_STRENGTH],
                "weaknesses":      [],
                "recommendations": [],
                "career_level":    DEFAULT_CAREER_LEVEL,
                "industry_fit":    [],
            },
            "contact_completeness": NEUTRAL_PERCENT,
            "ats_score":            NEUTRAL_PERCENT,
            "degraded":             True,
        })

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _parse(self, raw_text: str) -> dict[str, Any]:
        text = strip_code_fences(raw_text or "")
        try:
            payload = json.loads(text)
        except (ValueError, RecursionError) as exc:
            # JSONDecodeError is a ValueError; oversized integer literals raise the base class
            logger.warning(
                "Normalizer | unparseable AI response chars=%d error=%s", len(text), exc,
            )
            detail = (
                f"{exc.msg} (line {exc.lineno}, column {exc.colno})"
                if isinstance(exc, json.JSONDecodeError) else str(exc)
            )
            raise NormalizationFailed(
                f"AI response is not valid JSON: {detail}",
                degraded_result=self.degraded(),
            ) from exc

        if not isinstance(payload, dict):
            raise NormalizationFailed(
                f"AI response is a JSON {type(payload).__name__}, expected an object",
                degraded_result=self.degraded(),
            )

        missing = [key for key in ("scores", "analysis") if not isinstance(payload.get(key), dict)]
        if missing:
            logger.warning("Normalizer | invalid analysis structure missing=%s", missing)
            raise NormalizationFailed(
                f"Invalid analysis structure: missing {' and '.join(missing)} object",
                degraded_result=self.degraded(),
            )
        return payload

    @staticmethod
    def _normalize_scores(raw_scores: dict[str, Any]) -> dict[str, float]:
        scores: dict[str, float] = {}
        defaulted: list[str] = []

        for name in DIMENSION_SCORES:
            value = _score(raw_scores.get(name))
            if value is None:
                defaulted.append(name)
                value = NEUTRAL_SCORE
            scores[name] = value

        overall = _score(raw_scores.get("overall"))
        if overall is None:
            defaulted.append("overall")
            overall = math.fsum(scores[name] for name in DIMENSION_SCORES) / len(DIMENSION_SCORES)
        scores["overall"] = overall

        if defaulted:
            logger.info("Normalizer | scores defaulted=%s", defaulted)
        return scores

    @staticmethod
    def _normalize_narrative(raw: dict[str, Any]) -> dict[str, Any]:
        narrative: dict[str, Any] = {name: _string_list(raw.get(name)) for name in NARRATIVE_LISTS}
        if not narrative["strengths"]:
            narrative["strengths"] = [FALLBACK_STRENGTH]
        narrative["summary"] = _non_empty_str(raw.get("summary"), FALLBACK_SUMMARY)
        narrative["career_level"] = _career_level(raw.get("career_level"))
        return narrative
