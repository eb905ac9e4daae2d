"""Domain types for knowledge content.

Content is a closed tagged union: every payload carries a ``kind``
discriminator and the set of kinds is fixed by :class:`ContentType`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContentType(str, Enum):
    """Variants of ingestible knowledge content."""

    TEXT = "text"
    QA = "qa"
    WEBSITE = "website"
    FILE = "file"


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def content_type(self) -> ContentType:
        return ContentType(self.kind)  # type: ignore[attr-defined]


class TextPayload(_Payload):
    kind: Literal["text"] = "text"
    body: str = Field(..., min_length=1)


class QAPayload(_Payload):
    kind: Literal["qa"] = "qa"
    question: str = Field(..., min_length=1)
    answer: str = ""


class WebsitePayload(_Payload):
    kind: Literal["website"] = "website"
    url: str = Field(..., min_length=1)
    title: str | None = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            msg = "url must use http or https"
            raise ValueError(msg)
        return value


class FileUpload(_Payload):
    """Raw file submitted for ingestion; the bytes go to object storage."""

    kind: Literal["file"] = "file"
    filename: str = Field(..., min_length=1)
    mime_type: str = "application/octet-stream"
    data: bytes = Field(..., repr=False)

    @field_validator("data")
    @classmethod
    def _validate_data(cls, value: bytes) -> bytes:
        if not value:
            msg = "file upload must not be empty"
            raise ValueError(msg)
        return value


class FileReference(_Payload):
    """Stored file payload pointing at its object-store path."""

    kind: Literal["file"] = "file"
    storage_path: str | None
    mime_type: str = "application/octet-stream"
    filename: str = ""
    size_bytes: int = 0
    extracted_text: str | None = None


IngestPayload = Annotated[
    TextPayload | QAPayload | WebsitePayload | FileUpload,
    Field(discriminator="kind"),
]
StoredPayload = TextPayload | QAPayload | WebsitePayload | FileReference


@dataclass(slots=True, frozen=True)
class KnowledgeSourceInfo:
    """Read-only view of a knowledge source."""

    id: UUID
    owner_id: str
    name: str
    embedding_model: str
    embedding_dimensions: int | None


@dataclass(slots=True, frozen=True)
class ContentItem:
    """One persisted unit of knowledge."""

    id: UUID
    knowledge_source_id: UUID
    payload: StoredPayload
    created_at: datetime | None = None

    @property
    def content_type(self) -> ContentType:
        return self.payload.content_type
