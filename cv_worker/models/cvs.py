"""
SQLAlchemy ORM Model — cvs

One row per uploaded CV. The upload flow inserts the row in 'pending';
the worker owns every later status transition.

State machine (status column):
    pending    — file stored, job enqueued, not yet picked up
    processing — a worker attempt is in flight
    completed  — analysis persisted (scores + analysis JSONB)
    error      — the last attempt failed (see error_message)

Columns written by the worker: status, scores, analysis, error_message,
processed_date. Everything else belongs to the upload flow.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class CV(Base):
    __tablename__ = "cvs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'error')",
            name="cvs_status_check",
        ),
        Index("idx_cvs_user_id", "user_id"),
        Index("idx_cvs_status",  "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Upload-side fields
    file_path: Mapped[str] = mapped_column(Text, nullable=False, comment="Object key in the CV bucket")
    file_name: Mapped[str] = mapped_column(Text, nullable=False, comment="Original display filename")
    file_type: Mapped[str] = mapped_column(Text, nullable=False, comment="Declared MIME type")

    # Worker-owned fields
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="pending",
        server_default="pending",
    )
    scores: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    analysis: Mapped[Optional[dict]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Normalized AnalysisResult without scores (narrative, keywords, ats_score, ...)",
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Populated only when status='error'",
    )
    processed_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<CV id={self.id} status={self.status} file={self.file_name!r}>"
