"""Request and response models for the knowledge pipeline API."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from knowledge_pipeline.core.domain import (
    ContentItem,
    ContentType,
    FileReference,
    KnowledgeSourceInfo,
    QAPayload,
    TextPayload,
    WebsitePayload,
)
from knowledge_pipeline.ingestion.models import CycleReport, EmbeddingJobRecord, SearchHit

DataT = TypeVar("DataT")


class ResponseEnvelope(BaseModel, Generic[DataT]):
    """Standard response wrapper."""

    data: DataT


class HealthResponse(BaseModel):
    status: str = "ok"


InlineContent = Annotated[
    TextPayload | QAPayload | WebsitePayload,
    Field(discriminator="kind"),
]


class KnowledgeSourceCreate(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=120)
    name: str = Field(..., min_length=1, max_length=200)
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int | None = Field(default=None, ge=1)


class KnowledgeSourceResponse(BaseModel):
    id: UUID
    owner_id: str
    name: str
    embedding_model: str
    embedding_dimensions: int | None = None

    @classmethod
    def from_info(cls, info: KnowledgeSourceInfo) -> KnowledgeSourceResponse:
        return cls(
            id=info.id,
            owner_id=info.owner_id,
            name=info.name,
            embedding_model=info.embedding_model,
            embedding_dimensions=info.embedding_dimensions,
        )


class ContentResponse(BaseModel):
    id: UUID
    knowledge_source_id: UUID
    content_type: ContentType
    created_at: datetime | None = None
    payload: dict[str, Any]

    @classmethod
    def from_item(cls, item: ContentItem) -> ContentResponse:
        exclude = {"extracted_text"} if isinstance(item.payload, FileReference) else set()
        return cls(
            id=item.id,
            knowledge_source_id=item.knowledge_source_id,
            content_type=item.content_type,
            created_at=item.created_at,
            payload=item.payload.model_dump(exclude=exclude),
        )


class CycleRequest(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=100)


class CycleResponse(BaseModel):
    backend: str | None
    claimed: int
    succeeded: int
    failed: int
    unavailable: list[str]
    jobs: dict[str, str]

    @classmethod
    def from_report(cls, report: CycleReport) -> CycleResponse:
        return cls.model_validate(report.as_dict())


class JobResponse(BaseModel):
    id: UUID
    knowledge_source_id: UUID
    content_id: UUID
    content_type: ContentType
    status: str
    attempts: int
    last_error: str | None = None
    claimed_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, record: EmbeddingJobRecord) -> JobResponse:
        return cls(
            id=record.id,
            knowledge_source_id=record.knowledge_source_id,
            content_id=record.content_id,
            content_type=record.content_type,
            status=record.status.value,
            attempts=record.attempts,
            last_error=record.last_error,
            claimed_at=record.claimed_at,
            created_at=record.created_at,
        )


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(default=5, ge=1, le=50)
    content_types: list[ContentType] | None = None


class SearchHitResponse(BaseModel):
    content_id: UUID
    content_type: ContentType
    score: float
    snippet: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_hit(cls, hit: SearchHit) -> SearchHitResponse:
        return cls(
            content_id=hit.key.content_id,
            content_type=hit.key.content_type,
            score=hit.score,
            snippet=hit.snippet,
            metadata=hit.metadata,
        )
