"""Data models for embedding jobs, queue claims and vector documents."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import NAMESPACE_URL, UUID, uuid5

from knowledge_pipeline.core.db.models import EmbeddingJobStatus
from knowledge_pipeline.core.domain import ContentType


class QueueBackendName(str, Enum):
    """Queue backends in order of preference."""

    PRIMARY = "primary"
    FALLBACK = "fallback"
    DIRECT = "direct"


@dataclass(slots=True, frozen=True)
class ContentKey:
    """Identity of a piece of content across the job table and the vector index."""

    knowledge_source_id: UUID
    content_id: UUID
    content_type: ContentType

    @property
    def point_id(self) -> str:
        """Deterministic vector point id so re-embedding overwrites."""

        name = f"{self.knowledge_source_id}:{self.content_type.value}:{self.content_id}"
        return str(uuid5(NAMESPACE_URL, name))

    def __str__(self) -> str:
        return f"{self.content_type.value}:{self.content_id}"


@dataclass(slots=True, frozen=True)
class EmbeddingJobRecord:
    """Snapshot of an ``embedding_jobs`` row."""

    id: UUID
    knowledge_source_id: UUID
    content_id: UUID
    content_type: ContentType
    status: EmbeddingJobStatus
    attempts: int = 0
    claimed_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime | None = None

    @property
    def key(self) -> ContentKey:
        return ContentKey(self.knowledge_source_id, self.content_id, self.content_type)

    @property
    def is_finished(self) -> bool:
        return self.status in (EmbeddingJobStatus.DONE, EmbeddingJobStatus.FAILED)


@dataclass(slots=True, frozen=True)
class ClaimedJob:
    """A job handed to the worker by one queue backend.

    ``receipt`` identifies the backend-specific delivery (a stream entry id
    for the primary backend) and is needed to acknowledge it.
    """

    job: EmbeddingJobRecord
    backend: QueueBackendName
    receipt: str | None = None


@dataclass(slots=True, frozen=True)
class ClaimResult:
    """Jobs claimed during one worker cycle and the backend that served them."""

    backend: QueueBackendName | None
    jobs: Sequence[ClaimedJob] = ()
    unavailable: tuple[QueueBackendName, ...] = ()


@dataclass(slots=True, frozen=True)
class VectorDocument:
    """Embedding and snippet stored under a content key."""

    key: ContentKey
    vector: Sequence[float]
    snippet: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class SearchHit:
    key: ContentKey
    score: float
    snippet: str
    metadata: dict[str, Any] = field(default_factory=dict)


class JobOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DISCARDED = "discarded"


@dataclass(slots=True)
class CycleReport:
    """Summary of one ``run_cycle`` invocation."""

    backend: QueueBackendName | None
    claimed: int = 0
    outcomes: dict[str, JobOutcome] = field(default_factory=dict)
    unavailable: tuple[QueueBackendName, ...] = ()

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome is JobOutcome.SUCCEEDED)

    @property
    def failed(self) -> int:
        settled = (JobOutcome.SUCCEEDED, JobOutcome.DISCARDED)
        return sum(1 for outcome in self.outcomes.values() if outcome not in settled)

    def as_dict(self) -> dict[str, Any]:
        return {
            "backend": self.backend.value if self.backend else None,
            "claimed": self.claimed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "unavailable": [backend.value for backend in self.unavailable],
            "jobs": {job_id: outcome.value for job_id, outcome in self.outcomes.items()},
        }
