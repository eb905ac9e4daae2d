"""SQL access to ``embedding_jobs`` and the ``embedding_queue_markers`` polling table.

All methods are coroutines that run their SQLModel session in a worker thread.
Claims go through a compare-and-set update on the marker row, which is the
only claim token shared by the primary and fallback backends.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, delete, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from knowledge_pipeline.core.db.models import (
    EmbeddingJob,
    EmbeddingJobStatus,
    EmbeddingQueueMarker,
)
from knowledge_pipeline.core.db.session import session_scope
from knowledge_pipeline.core.domain import ContentType

from ..models import ContentKey, EmbeddingJobRecord

_MAX_ERROR_LENGTH = 2000


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True, frozen=True)
class ClaimAttempt:
    """Result of trying to claim one specific job."""

    record: EmbeddingJobRecord | None
    claimed: bool


def to_record(job: EmbeddingJob) -> EmbeddingJobRecord:
    return EmbeddingJobRecord(
        id=job.id,
        knowledge_source_id=job.knowledge_source_id,
        content_id=job.content_id,
        content_type=ContentType(job.content_type),
        status=EmbeddingJobStatus(job.status),
        attempts=job.attempts,
        claimed_at=job.claimed_at,
        last_error=job.last_error,
        created_at=job.created_at,
    )


class SqlJobRepository:
    """Persist embedding jobs and their queue markers."""

    def __init__(
        self,
        engine: Engine,
        *,
        max_attempts: int = 3,
        visibility_timeout: float = 30.0,
    ) -> None:
        self._engine = engine
        self._max_attempts = max_attempts
        self._visibility_timeout = timedelta(seconds=visibility_timeout)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def create_or_reuse(self, key: ContentKey) -> tuple[EmbeddingJobRecord, bool]:
        """Return the pending job for ``key``, creating job and marker if none exists.

        Failed jobs for the same content are removed first. A job that is
        already processing is not reused; the new job stays unclaimable until
        that claim ends or goes stale. The boolean is true when a new job was
        created.
        """

        return await asyncio.to_thread(self._create_or_reuse_sync, key)

    def _create_or_reuse_sync(self, key: ContentKey) -> tuple[EmbeddingJobRecord, bool]:
        with session_scope(self._engine) as session:
            failed_ids = list(
                session.exec(
                    select(EmbeddingJob.id).where(
                        *_key_filter(key),
                        EmbeddingJob.status == EmbeddingJobStatus.FAILED.value,
                    )
                )
            )
            if failed_ids:
                _delete_jobs(session, failed_ids)

            existing = session.exec(
                select(EmbeddingJob)
                .where(
                    *_key_filter(key),
                    EmbeddingJob.status == EmbeddingJobStatus.PENDING.value,
                )
                .order_by(EmbeddingJob.created_at)
            ).first()
            if existing is not None:
                return to_record(existing), False

            now = _utcnow()
            job = EmbeddingJob(
                knowledge_source_id=key.knowledge_source_id,
                content_id=key.content_id,
                content_type=key.content_type.value,
                status=EmbeddingJobStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            session.flush()
            session.add(
                EmbeddingQueueMarker(
                    job_id=job.id,
                    created_at=now,
                    status=EmbeddingJobStatus.PENDING.value,
                )
            )
            session.flush()
            return to_record(job), True

    async def get(self, job_id: UUID) -> EmbeddingJobRecord | None:
        return await asyncio.to_thread(self._get_sync, job_id)

    def _get_sync(self, job_id: UUID) -> EmbeddingJobRecord | None:
        with session_scope(self._engine) as session:
            job = session.get(EmbeddingJob, job_id)
            return to_record(job) if job is not None else None

    async def claim(self, job_id: UUID) -> ClaimAttempt:
        """Claim a single job through its marker, as the primary backend does per message."""

        return await asyncio.to_thread(self._claim_sync, job_id)

    def _claim_sync(self, job_id: UUID) -> ClaimAttempt:
        now = _utcnow()
        with session_scope(self._engine) as session:
            claimed = self._flip_marker(session, job_id, now)
            job = session.get(EmbeddingJob, job_id)
            if job is None:
                return ClaimAttempt(record=None, claimed=False)
            if claimed:
                _mark_job_processing(job, now)
                session.add(job)
                session.flush()
            return ClaimAttempt(record=to_record(job), claimed=claimed)

    async def claim_markers(self, limit: int) -> list[EmbeddingJobRecord]:
        """Flip up to ``limit`` eligible markers to processing and return their jobs."""

        return await asyncio.to_thread(self._claim_markers_sync, limit)

    def _claim_markers_sync(self, limit: int) -> list[EmbeddingJobRecord]:
        now = _utcnow()
        records: list[EmbeddingJobRecord] = []
        with session_scope(self._engine) as session:
            candidates = list(
                session.exec(
                    select(EmbeddingQueueMarker.job_id)
                    .where(self._eligible(now))
                    .order_by(EmbeddingQueueMarker.created_at)
                    .limit(limit)
                )
            )
            for job_id in candidates:
                if not self._flip_marker(session, job_id, now):
                    continue
                job = session.get(EmbeddingJob, job_id)
                if job is None:
                    continue
                _mark_job_processing(job, now)
                session.add(job)
                session.flush()
                records.append(to_record(job))
            session.flush()
        return records

    async def scan_pending(self, limit: int) -> list[EmbeddingJobRecord]:
        """Read pending jobs oldest first without claiming them."""

        return await asyncio.to_thread(self._scan_pending_sync, limit)

    def _scan_pending_sync(self, limit: int) -> list[EmbeddingJobRecord]:
        cutoff = _utcnow() - self._visibility_timeout
        with session_scope(self._engine) as session:
            jobs = session.exec(
                select(EmbeddingJob)
                .where(
                    EmbeddingJob.status == EmbeddingJobStatus.PENDING.value,
                    ~_sibling_processing(EmbeddingJob, cutoff),
                )
                .order_by(EmbeddingJob.created_at)
                .limit(limit)
            )
            return [to_record(job) for job in jobs]

    async def mark_done(self, job_id: UUID) -> None:
        await asyncio.to_thread(self._mark_done_sync, job_id)

    def _mark_done_sync(self, job_id: UUID) -> None:
        now = _utcnow()
        with session_scope(self._engine) as session:
            job = session.get(EmbeddingJob, job_id)
            if job is None:
                return
            job.status = EmbeddingJobStatus.DONE.value
            job.claimed_at = None
            job.completed_at = now
            job.last_error = None
            job.updated_at = now
            session.add(job)
            _mirror_marker(session, job_id, EmbeddingJobStatus.DONE)

    async def record_failure(
        self, job_id: UUID, error: str, *, permanent: bool
    ) -> EmbeddingJobRecord | None:
        """Count a failed attempt; the job goes back to pending or is marked failed."""

        return await asyncio.to_thread(self._record_failure_sync, job_id, error, permanent)

    def _record_failure_sync(
        self, job_id: UUID, error: str, permanent: bool
    ) -> EmbeddingJobRecord | None:
        now = _utcnow()
        with session_scope(self._engine) as session:
            job = session.get(EmbeddingJob, job_id)
            if job is None:
                return None
            job.attempts += 1
            job.last_error = error[:_MAX_ERROR_LENGTH]
            job.claimed_at = None
            job.updated_at = now
            if permanent or job.attempts >= self._max_attempts:
                status = EmbeddingJobStatus.FAILED
                job.completed_at = now
            else:
                status = EmbeddingJobStatus.PENDING
            job.status = status.value
            session.add(job)
            _mirror_marker(session, job_id, status)
            session.flush()
            return to_record(job)

    async def delete_for_content(self, key: ContentKey) -> int:
        """Remove every job and marker belonging to ``key``."""

        return await asyncio.to_thread(self._delete_for_content_sync, key)

    def _delete_for_content_sync(self, key: ContentKey) -> int:
        with session_scope(self._engine) as session:
            job_ids = list(session.exec(select(EmbeddingJob.id).where(*_key_filter(key))))
            if job_ids:
                _delete_jobs(session, job_ids)
            return len(job_ids)

    def _eligible(self, now: datetime):
        cutoff = now - self._visibility_timeout
        job = aliased(EmbeddingJob)
        return and_(
            or_(
                EmbeddingQueueMarker.status == EmbeddingJobStatus.PENDING.value,
                and_(
                    EmbeddingQueueMarker.status == EmbeddingJobStatus.PROCESSING.value,
                    EmbeddingQueueMarker.claimed_at < cutoff,
                ),
            ),
            ~select(job.id)
            .where(job.id == EmbeddingQueueMarker.job_id, _sibling_processing(job, cutoff))
            .correlate(EmbeddingQueueMarker)
            .exists(),
        )

    def _flip_marker(self, session: Session, job_id: UUID, now: datetime) -> bool:
        result = session.exec(
            update(EmbeddingQueueMarker)
            .where(EmbeddingQueueMarker.job_id == job_id, self._eligible(now))
            .values(status=EmbeddingJobStatus.PROCESSING.value, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


def _key_filter(key: ContentKey) -> tuple:
    return (
        EmbeddingJob.knowledge_source_id == key.knowledge_source_id,
        EmbeddingJob.content_id == key.content_id,
        EmbeddingJob.content_type == key.content_type.value,
    )


def _sibling_processing(job, cutoff: datetime):
    """True while another job for the same content holds a live claim."""

    sibling = aliased(EmbeddingJob)
    return (
        select(sibling.id)
        .where(
            sibling.knowledge_source_id == job.knowledge_source_id,
            sibling.content_id == job.content_id,
            sibling.content_type == job.content_type,
            sibling.id != job.id,
            sibling.status == EmbeddingJobStatus.PROCESSING.value,
            sibling.claimed_at >= cutoff,
        )
        .correlate(job)
        .exists()
    )


def _mark_job_processing(job: EmbeddingJob, now: datetime) -> None:
    job.status = EmbeddingJobStatus.PROCESSING.value
    job.claimed_at = now
    job.updated_at = now


def _mirror_marker(session: Session, job_id: UUID, status: EmbeddingJobStatus) -> None:
    session.exec(
        update(EmbeddingQueueMarker)
        .where(EmbeddingQueueMarker.job_id == job_id)
        .values(status=status.value, claimed_at=None)
        .execution_options(synchronize_session=False)
    )


def _delete_jobs(session: Session, job_ids: list[UUID]) -> None:
    session.exec(delete(EmbeddingQueueMarker).where(EmbeddingQueueMarker.job_id.in_(job_ids)))
    session.exec(delete(EmbeddingJob).where(EmbeddingJob.id.in_(job_ids)))
