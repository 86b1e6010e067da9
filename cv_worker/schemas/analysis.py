"""
CV Analysis — Pydantic Schemas

Covers the data that flows through the worker:
  - Job               the immutable task payload produced by the upload flow
  - AnalysisResult    the canonical, validated output of one analysis
  - JobStatus         the cvs.status state machine

Design decisions:
  - AnalysisResult field constraints (ge/le, min_length) are the last line of
    defence: the normalizer fills defaults, pydantic refuses anything that
    still violates a range, so no consumer ever sees an out-of-bounds score.
  - Field names are snake_case and match the JSON keys requested in the
    prompt, so a canonical model response round-trips unchanged.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Score dimensions and enumerations shared with the prompt builder
# ---------------------------------------------------------------------------

DIMENSION_SCORES: tuple[str, ...] = (
    "experience",
    "education",
    "skills",
    "presentation",
    "achievements",
)
SCORE_NAMES: tuple[str, ...] = DIMENSION_SCORES + ("overall",)

SCORE_MIN: float = 0.0
SCORE_MAX: float = 10.0
PERCENT_MIN: int = 0
PERCENT_MAX: int = 100


class CareerLevel(str, Enum):
    ENTRY     = "Entry-level"
    MID       = "Mid-level"
    SENIOR    = "Senior"
    EXECUTIVE = "Executive"


# ---------------------------------------------------------------------------
# Job status state machine
# ---------------------------------------------------------------------------

class JobStatus(str, Enum):
    """
    Maps to cvs.status.
    Transitions: pending → processing → completed | error
    """
    PENDING    = "pending"      # record created by the upload flow, job enqueued
    PROCESSING = "processing"   # worker attempt in flight
    COMPLETED  = "completed"    # analysis persisted
    ERROR      = "error"        # attempt failed (see error_message)


# ---------------------------------------------------------------------------
# Job: Celery task payload
# ---------------------------------------------------------------------------

class Job(BaseModel):
    """One request to analyse an uploaded CV. Immutable once enqueued."""
    model_config = ConfigDict(frozen=True)

    document_id:           UUID
    owner_id:              UUID
    storage_path:          str = Field(..., min_length=1)
    declared_content_type: str
    display_name:          str = ""

    @property
    def job_id(self) -> UUID:
        # One cvs row per document; the row id doubles as the job id
        return self.document_id


# ---------------------------------------------------------------------------
# AnalysisResult
# ---------------------------------------------------------------------------

ScoreValue = Annotated[float, Field(ge=SCORE_MIN, le=SCORE_MAX)]


class Scores(BaseModel):
    experience:   ScoreValue
    education:    ScoreValue
    skills:       ScoreValue
    presentation: ScoreValue
    achievements: ScoreValue
    overall:      ScoreValue


class Narrative(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    summary:         str = Field(..., min_length=1)
    strengths:       list[str] = Field(..., min_length=1)
    weaknesses:      list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    career_level:    CareerLevel
    industry_fit:    list[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """
    Canonical analysis of one CV.

    degraded=True marks a placeholder built when the model's output could not
    be parsed; it is structurally complete but carries no real judgement.
    """
    scores:               Scores
    analysis:             Narrative
    keywords:             list[str] = Field(default_factory=list)
    experience_years:     int = Field(0, ge=0)
    education_level:      str = Field("Not specified", min_length=1)
    certifications:       list[str] = Field(default_factory=list)
    languages:            list[str] = Field(default_factory=list)
    contact_completeness: int = Field(..., ge=PERCENT_MIN, le=PERCENT_MAX)
    ats_score:            int = Field(..., ge=PERCENT_MIN, le=PERCENT_MAX)
    improvement_priority: list[str] = Field(default_factory=list)
    degraded:             bool = False
