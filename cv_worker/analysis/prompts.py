"""
CV analysis prompt.

The JSON schema section is rendered from the same constants the normalizer
validates against (score names, career levels, percentage bounds), so the
instructions the model receives and the shape the worker accepts are one
definition. The model is still untrusted: the normalizer re-validates
everything the prompt asks for.
"""

from __future__ import annotations

from typing import Final

from cv_worker.schemas.analysis import (
    PERCENT_MAX,
    PERCENT_MIN,
    SCORE_MAX,
    SCORE_MIN,
    CareerLevel,
)

_SCORE_GUIDANCE: Final[dict[str, str]] = {
    "experience":   "Work experience relevance, progression and impact",
    "education":    "Educational background strength and relevance",
    "skills":       "Technical and soft skills, breadth and depth",
    "presentation": "Formatting, clarity and structure of the CV",
    "achievements": "Quantifiable accomplishments and awards",
    "overall":      "Holistic assessment (weighted across all dimensions)",
}

_TRUNCATION_MARKER: Final[str] = "\n[... CV text truncated ...]"


def _render_schema() -> str:
    lo, hi = f"{SCORE_MIN:g}", f"{SCORE_MAX:g}"
    levels = " | ".join(f'"{level.value}"' for level in CareerLevel)

    score_lines = ",\n".join(
        f'    "{name}": <number {lo}-{hi}>  // {hint}'
        for name, hint in _SCORE_GUIDANCE.items()
    )

    return (
        "{\n"
        '  "scores": {\n'
        f"{score_lines}\n"
        "  },\n"
        '  "analysis": {\n'
        '    "summary": <string, 2-3 sentence professional assessment>,\n'
        '    "strengths": [<string>, ...],        // 3-5 items, at least one\n'
        '    "weaknesses": [<string>, ...],       // 2-4 items\n'
        '    "recommendations": [<string>, ...],  // 3-5 actionable items\n'
        f'    "career_level": {levels},\n'
        '    "industry_fit": [<string>, ...]\n'
        "  },\n"
        '  "keywords": [<string>, ...],           // 10-15 distinct keywords\n'
        '  "experience_years": <integer >= 0>,\n'
        '  "education_level": <string>,\n'
        '  "certifications": [<string>, ...],\n'
        '  "languages": [<string>, ...],\n'
        f'  "contact_completeness": <integer {PERCENT_MIN}-{PERCENT_MAX}>,\n'
        f'  "ats_score": <integer {PERCENT_MIN}-{PERCENT_MAX}>,\n'
        '  "improvement_priority": [<string>, ...]  // top 3, most important first\n'
        "}"
    )


_TEMPLATE: Final[str] = """\
You are an expert HR professional and career advisor. Analyze the following CV \
and return a structured evaluation.

Respond with a single JSON object that matches this schema exactly:

{schema}

Rules:
- All scores are numbers between {score_min:g} and {score_max:g}.
- "contact_completeness" and "ats_score" are integers between {pct_min} and {pct_max}.
- "career_level" must be exactly one of the listed values.
- Use empty arrays when nothing applies; never omit a field.
- Respond only with valid JSON. No Markdown, no code fences, no text before or after the JSON.

CV Text:
{text}
"""

_SCHEMA: Final[str] = _render_schema()


def build_prompt(text: str, max_chars: int | None = None) -> str:
    """Render the analysis prompt for extracted CV text. Pure and deterministic."""
    body = text.strip()
    if max_chars is not None and len(body) > max_chars:
        body = body[:max_chars].rstrip() + _TRUNCATION_MARKER

    return _TEMPLATE.format(
        schema=_SCHEMA,
        score_min=SCORE_MIN,
        score_max=SCORE_MAX,
        pct_min=PERCENT_MIN,
        pct_max=PERCENT_MAX,
        text=body,
    )
