"""Embedding job queue facade with per-cycle backend degradation."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from uuid import UUID

from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError

from knowledge_pipeline.core.domain import ContentType

from ..errors import QueueError, QueueUnavailableError
from ..models import ClaimedJob, ClaimResult, ContentKey, EmbeddingJobRecord, QueueBackendName
from .base import QueueBackend
from .direct import DirectScanBackend
from .fallback import MarkerTableBackend
from .primary import RedisStreamBackend
from .repository import SqlJobRepository

logger = logging.getLogger(__name__)

JOBS_ENQUEUED = Counter(
    "knowledge_embedding_jobs_enqueued_total",
    "Embedding jobs registered, split by whether an existing job was reused.",
    ["content_type", "reused"],
)
QUEUE_CLAIMS = Counter(
    "knowledge_embedding_queue_claims_total",
    "Embedding jobs claimed per backend.",
    ["backend"],
)
QUEUE_UNAVAILABLE = Counter(
    "knowledge_embedding_queue_unavailable_total",
    "Cycles in which a queue backend could not be reached.",
    ["backend"],
)


class EmbeddingJobQueue:
    """Register embedding jobs and hand them to workers.

    Every job is written to ``embedding_jobs`` together with a queue marker,
    then published to the Redis stream when one is configured. Each call to
    :meth:`claim_batch` tries the stream, the marker table and finally a
    direct scan of pending jobs, stopping at the first backend that yields
    work.
    """

    def __init__(
        self,
        *,
        repository: SqlJobRepository,
        primary: RedisStreamBackend | None = None,
        fallback: QueueBackend | None = None,
        direct: QueueBackend | None = None,
    ) -> None:
        self._repository = repository
        self._primary = primary
        backends: list[QueueBackend] = []
        if primary is not None:
            backends.append(primary)
        backends.append(fallback or MarkerTableBackend(repository))
        backends.append(direct or DirectScanBackend(repository))
        self._backends = backends
        self._by_name = {backend.name: backend for backend in backends}

    @property
    def backends(self) -> Sequence[QueueBackendName]:
        return [backend.name for backend in self._backends]

    async def enqueue(
        self, knowledge_source_id: UUID, content_id: UUID, content_type: ContentType
    ) -> UUID:
        """Register a pending job for the content and return its id."""

        key = ContentKey(knowledge_source_id, content_id, content_type)
        try:
            record, created = await self._repository.create_or_reuse(key)
        except SQLAlchemyError as exc:
            raise QueueError("failed to register embedding job") from exc

        JOBS_ENQUEUED.labels(content_type.value, str(not created).lower()).inc()
        if created and self._primary is not None:
            try:
                await self._primary.publish(record.id)
            except QueueUnavailableError:
                logger.warning(
                    "stream publish failed; job remains claimable from the marker table",
                    extra={"job_id": str(record.id)},
                )
        return record.id

    async def discard(self, key: ContentKey) -> int:
        """Delete all jobs for the content. Stream entries left behind are dropped on read."""

        try:
            return await self._repository.delete_for_content(key)
        except SQLAlchemyError as exc:
            raise QueueError("failed to discard embedding jobs") from exc

    async def get_job(self, job_id: UUID) -> EmbeddingJobRecord | None:
        return await self._repository.get(job_id)

    async def claim_batch(self, limit: int) -> ClaimResult:
        unavailable: list[QueueBackendName] = []
        for backend in self._backends:
            try:
                jobs = await backend.claim_batch(limit)
            except QueueUnavailableError as exc:
                QUEUE_UNAVAILABLE.labels(backend.name.value).inc()
                logger.warning(
                    "queue backend unavailable",
                    extra={"backend": backend.name.value, "error": exc.message},
                )
                unavailable.append(backend.name)
                continue
            if jobs:
                QUEUE_CLAIMS.labels(backend.name.value).inc(len(jobs))
                return ClaimResult(backend=backend.name, jobs=jobs, unavailable=tuple(unavailable))
        return ClaimResult(backend=None, jobs=(), unavailable=tuple(unavailable))

    async def ack(self, claimed: ClaimedJob) -> None:
        await self._by_name[claimed.backend].ack(claimed)

    async def fail(
        self, claimed: ClaimedJob, error: str, *, permanent: bool = False
    ) -> EmbeddingJobRecord | None:
        return await self._by_name[claimed.backend].fail(claimed, error, permanent=permanent)
