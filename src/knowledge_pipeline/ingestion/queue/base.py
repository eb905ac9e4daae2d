"""Common interface for embedding queue backends."""

from __future__ import annotations

from typing import Protocol

from ..models import ClaimedJob, EmbeddingJobRecord, QueueBackendName


class QueueBackend(Protocol):
    """A source of embedding jobs for one worker cycle.

    ``claim_batch`` raises :class:`~knowledge_pipeline.ingestion.errors.QueueUnavailableError`
    when the backend cannot be reached; an empty list means nothing is eligible.
    """

    name: QueueBackendName

    async def claim_batch(self, limit: int) -> list[ClaimedJob]:
        ...

    async def ack(self, claimed: ClaimedJob) -> None:
        ...

    async def fail(
        self, claimed: ClaimedJob, error: str, *, permanent: bool = False
    ) -> EmbeddingJobRecord | None:
        ...
