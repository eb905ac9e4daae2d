"""Status-table polling backend used when the stream is unavailable or empty."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..errors import QueueUnavailableError
from ..models import ClaimedJob, EmbeddingJobRecord, QueueBackendName
from .repository import SqlJobRepository

logger = logging.getLogger(__name__)


class MarkerTableBackend:
    """Claim jobs by flipping ``embedding_queue_markers`` rows with a conditional update."""

    name = QueueBackendName.FALLBACK

    def __init__(self, repository: SqlJobRepository) -> None:
        self._repository = repository

    async def claim_batch(self, limit: int) -> list[ClaimedJob]:
        try:
            records = await self._repository.claim_markers(limit)
        except SQLAlchemyError as exc:
            raise QueueUnavailableError("marker table is unavailable") from exc
        return [ClaimedJob(job=record, backend=self.name) for record in records]

    async def ack(self, claimed: ClaimedJob) -> None:
        await self._repository.mark_done(claimed.job.id)

    async def fail(
        self, claimed: ClaimedJob, error: str, *, permanent: bool = False
    ) -> EmbeddingJobRecord | None:
        record = await self._repository.record_failure(claimed.job.id, error, permanent=permanent)
        if record is not None:
            logger.info(
                "embedding job failure recorded",
                extra={
                    "job_id": str(record.id),
                    "status": record.status.value,
                    "attempts": record.attempts,
                },
            )
        return record
