"""
Job Store — persistence sink for cvs status transitions

Contract:
  update_status(job_id, status, fields)
      One UPDATE per call: status and payload fields land together or not at
      all. No cross-call transactions are needed or attempted.
  get_status(job_id)
      Current status, or None when the row does not exist.
  find_stale_pending(older_than, limit)
      Jobs still 'pending' after `older_than` — input to the requeue scanner.

Any database error, including a refused or dropped driver connection, is
surfaced as PersistenceFailed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cv_worker.core.errors import PersistenceFailed
from cv_worker.db.session import session_scope
from cv_worker.models.cvs import CV
from cv_worker.schemas.analysis import Job, JobStatus

logger = logging.getLogger(__name__)

# Columns the worker is allowed to write; upload-side columns are off limits
WRITABLE_FIELDS: frozenset[str] = frozenset(
    {"scores", "analysis", "error_message", "processed_date"}
)


class JobStore(Protocol):
    async def update_status(
        self, job_id: UUID, status: JobStatus, fields: dict[str, Any] | None = None,
    ) -> None: ...

    async def get_status(self, job_id: UUID) -> JobStatus | None: ...

    async def find_stale_pending(self, older_than: timedelta, limit: int = 50) -> list[Job]: ...


def _check_fields(fields: dict[str, Any]) -> None:
    illegal = set(fields) - WRITABLE_FIELDS
    if illegal:
        raise ValueError(f"Worker may not write cvs columns: {sorted(illegal)}")


class SqlAlchemyJobStore:
    """JobStore backed by the cvs table through an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def update_status(
        self,
        job_id: UUID,
        status: JobStatus,
        fields: dict[str, Any] | None = None,
    ) -> None:
        values = dict(fields or {})
        _check_fields(values)

        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(
                    update(CV)
                    .where(CV.id == job_id)
                    .values(status=JobStatus(status).value, **values)
                )
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Status write failed | job=%s status=%s error=%s", job_id, status, exc)
            raise PersistenceFailed(f"Failed to update CV record: {exc}") from exc

        if result.rowcount == 0:
            raise PersistenceFailed(f"Failed to update CV record: {job_id} does not exist")

        logger.debug("Status written | job=%s status=%s fields=%s", job_id, status, sorted(values))

    async def get_status(self, job_id: UUID) -> JobStatus | None:
        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(select(CV.status).where(CV.id == job_id))
                status = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailed(f"Failed to read CV record: {exc}") from exc
        return JobStatus(status) if status is not None else None

    async def find_stale_pending(self, older_than: timedelta, limit: int = 50) -> list[Job]:
        cutoff = datetime.now(timezone.utc) - older_than
        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(
                    select(CV)
                    .where(and_(CV.status == JobStatus.PENDING.value, CV.created_at < cutoff))
                    .order_by(CV.created_at)
                    .limit(limit)
                )
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailed(f"Failed to scan pending CVs: {exc}") from exc

        return [
            Job(
                document_id=row.id,
                owner_id=row.user_id,
                storage_path=row.file_path,
                declared_content_type=row.file_type,
                display_name=row.file_name,
            )
            for row in rows
        ]
