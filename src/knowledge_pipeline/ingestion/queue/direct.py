"""Last-resort backend reading pending jobs straight from ``embedding_jobs``.

There is no claim step, so two overlapping cycles may process the same job.
The vector index upsert is keyed by content, which makes that harmless.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from ..errors import QueueUnavailableError
from ..models import ClaimedJob, EmbeddingJobRecord, QueueBackendName
from .repository import SqlJobRepository


class DirectScanBackend:
    name = QueueBackendName.DIRECT

    def __init__(self, repository: SqlJobRepository) -> None:
        self._repository = repository

    async def claim_batch(self, limit: int) -> list[ClaimedJob]:
        try:
            records = await self._repository.scan_pending(limit)
        except SQLAlchemyError as exc:
            raise QueueUnavailableError("embedding job table is unavailable") from exc
        return [ClaimedJob(job=record, backend=self.name) for record in records]

    async def ack(self, claimed: ClaimedJob) -> None:
        await self._repository.mark_done(claimed.job.id)

    async def fail(
        self, claimed: ClaimedJob, error: str, *, permanent: bool = False
    ) -> EmbeddingJobRecord | None:
        return await self._repository.record_failure(claimed.job.id, error, permanent=permanent)
