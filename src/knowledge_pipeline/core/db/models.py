"""SQLModel declarative models for knowledge sources, content and embedding jobs."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def created_at_field() -> Any:
    return Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
    )


def updated_at_field() -> Any:
    return Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
        ),
    )


def knowledge_source_fk() -> Any:
    return Field(
        sa_column=Column(
            Uuid,
            ForeignKey("knowledge_sources.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )


def nullable_timestamp() -> Any:
    return Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class UUIDPrimaryKey(SQLModel, table=False):
    """Mixin providing a UUID primary key."""

    id: UUID = Field(default_factory=uuid4, primary_key=True, nullable=False)


class KnowledgeSource(UUIDPrimaryKey, table=True):
    """Tenant-scoped corpus grouping ingested content."""

    __tablename__ = "knowledge_sources"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    owner_id: str = Field(sa_column=Column(String(length=120), nullable=False, index=True))
    name: str = Field(sa_column=Column(String(length=200), nullable=False))
    embedding_model: str = Field(
        sa_column=Column(
            String(length=120), nullable=False, default="text-embedding-3-small"
        )
    )
    embedding_dimensions: int | None = Field(
        default=None, sa_column=Column(Integer, nullable=True)
    )


class TextContent(UUIDPrimaryKey, table=True):
    __tablename__ = "text_contents"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()
    knowledge_source_id: UUID = knowledge_source_fk()

    body: str = Field(sa_column=Column(Text, nullable=False))


class QAContent(UUIDPrimaryKey, table=True):
    __tablename__ = "qa_contents"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()
    knowledge_source_id: UUID = knowledge_source_fk()

    question: str = Field(sa_column=Column(Text, nullable=False))
    answer: str = Field(sa_column=Column(Text, nullable=False, default=""))


class WebsiteContent(UUIDPrimaryKey, table=True):
    __tablename__ = "website_contents"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()
    knowledge_source_id: UUID = knowledge_source_fk()

    url: str = Field(sa_column=Column(Text, nullable=False))
    title: str | None = Field(default=None, sa_column=Column(Text, nullable=True))


class FileContent(UUIDPrimaryKey, table=True):
    """Uploaded file metadata; the bytes live in object storage."""

    __tablename__ = "file_contents"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()
    knowledge_source_id: UUID = knowledge_source_fk()

    storage_path: str | None = Field(
        default=None, sa_column=Column(String(length=1024), nullable=True)
    )
    mime_type: str = Field(
        sa_column=Column(
            String(length=255), nullable=False, default="application/octet-stream"
        )
    )
    filename: str = Field(sa_column=Column(String(length=255), nullable=False))
    size_bytes: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    extracted_text: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )


class EmbeddingJobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (EmbeddingJobStatus.PENDING.value, EmbeddingJobStatus.PROCESSING.value)


class EmbeddingJob(UUIDPrimaryKey, table=True):
    """Unit of asynchronous work: one content item needs a vector."""

    __tablename__ = "embedding_jobs"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()
    knowledge_source_id: UUID = knowledge_source_fk()

    content_id: UUID = Field(sa_column=Column(Uuid, nullable=False))
    content_type: str = Field(sa_column=Column(String(length=16), nullable=False))
    status: str = Field(
        default=EmbeddingJobStatus.PENDING.value,
        sa_column=Column(
            String(length=16),
            nullable=False,
            default=EmbeddingJobStatus.PENDING.value,
        ),
    )
    attempts: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    claimed_at: datetime | None = nullable_timestamp()
    completed_at: datetime | None = nullable_timestamp()
    last_error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    __table_args__ = (
        Index("ix_embedding_jobs_status_created", "status", "created_at"),
        Index(
            "ix_embedding_jobs_content_key",
            "knowledge_source_id",
            "content_id",
            "content_type",
        ),
    )


class EmbeddingQueueMarker(SQLModel, table=True):
    """Fallback polling table: one claimable marker per embedding job."""

    __tablename__ = "embedding_queue_markers"

    job_id: UUID = Field(
        sa_column=Column(
            Uuid,
            ForeignKey("embedding_jobs.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    created_at: datetime = created_at_field()
    status: str = Field(
        default=EmbeddingJobStatus.PENDING.value,
        sa_column=Column(
            String(length=16),
            nullable=False,
            default=EmbeddingJobStatus.PENDING.value,
        ),
    )
    claimed_at: datetime | None = nullable_timestamp()

    __table_args__ = (
        Index("ix_embedding_queue_markers_status_created", "status", "created_at"),
    )


CONTENT_MODELS: dict[str, type[SQLModel]] = {
    "text": TextContent,
    "qa": QAContent,
    "website": WebsiteContent,
    "file": FileContent,
}
