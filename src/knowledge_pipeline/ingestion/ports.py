"""Contracts for the external systems the pipeline writes to and reads from."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

from knowledge_pipeline.core.domain import (
    ContentItem,
    ContentType,
    KnowledgeSourceInfo,
    StoredPayload,
)

from .models import ContentKey, SearchHit, VectorDocument


class ObjectStore(Protocol):
    async def put(self, path: str, data: bytes, mime_type: str) -> None:
        ...

    async def get(self, path: str) -> bytes:
        ...

    async def delete(self, path: str) -> None:
        ...


class ContentStore(Protocol):
    async def get_knowledge_source(self, knowledge_source_id: UUID) -> KnowledgeSourceInfo | None:
        ...

    async def insert(
        self, knowledge_source_id: UUID, content_id: UUID, payload: StoredPayload
    ) -> ContentItem:
        ...

    async def get(self, content_type: ContentType, content_id: UUID) -> ContentItem | None:
        ...

    async def replace(self, item: ContentItem, payload: StoredPayload) -> ContentItem:
        ...

    async def delete(self, content_type: ContentType, content_id: UUID) -> bool:
        ...

    async def record_extracted_text(self, content_id: UUID, text: str) -> None:
        ...


class ExtractionAdapter(Protocol):
    async def extract(self, data: bytes, mime_type: str) -> str:
        ...


class EmbeddingAdapter(Protocol):
    async def embed(self, text: str, model: str | None = None) -> list[float]:
        ...


class VectorIndex(Protocol):
    async def upsert(self, document: VectorDocument) -> None:
        ...

    async def delete(self, key: ContentKey) -> None:
        ...

    async def search(
        self,
        knowledge_source_id: UUID,
        vector: Sequence[float],
        *,
        limit: int = 10,
        content_types: Sequence[ContentType] | None = None,
    ) -> list[SearchHit]:
        ...


class JobRegistry(Protocol):
    """The slice of the job queue the orchestrator depends on."""

    async def enqueue(
        self, knowledge_source_id: UUID, content_id: UUID, content_type: ContentType
    ) -> UUID:
        ...

    async def discard(self, key: ContentKey) -> int:
        ...
