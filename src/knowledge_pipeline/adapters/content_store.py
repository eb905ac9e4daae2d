"""SQLModel-backed content store with one table per content variant."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from knowledge_pipeline.core.db.models import (
    CONTENT_MODELS,
    FileContent,
    KnowledgeSource,
    QAContent,
    TextContent,
    WebsiteContent,
)
from knowledge_pipeline.core.db.session import session_scope
from knowledge_pipeline.core.domain import (
    ContentItem,
    ContentType,
    FileReference,
    KnowledgeSourceInfo,
    QAPayload,
    StoredPayload,
    TextPayload,
    WebsitePayload,
)


def payload_fields(payload: StoredPayload) -> dict[str, object]:
    """Column values for the variant table that stores ``payload``."""

    if isinstance(payload, TextPayload):
        return {"body": payload.body}
    if isinstance(payload, QAPayload):
        return {"question": payload.question, "answer": payload.answer}
    if isinstance(payload, WebsitePayload):
        return {"url": payload.url, "title": payload.title}
    if isinstance(payload, FileReference):
        return {
            "storage_path": payload.storage_path,
            "mime_type": payload.mime_type,
            "filename": payload.filename,
            "size_bytes": payload.size_bytes,
            "extracted_text": payload.extracted_text,
        }
    msg = f"unsupported payload type: {type(payload).__name__}"
    raise TypeError(msg)


def to_payload(row: SQLModel) -> StoredPayload:
    if isinstance(row, TextContent):
        return TextPayload(body=row.body)
    if isinstance(row, QAContent):
        return QAPayload(question=row.question, answer=row.answer or "")
    if isinstance(row, WebsiteContent):
        return WebsitePayload(url=row.url, title=row.title)
    if isinstance(row, FileContent):
        return FileReference(
            storage_path=row.storage_path,
            mime_type=row.mime_type,
            filename=row.filename,
            size_bytes=row.size_bytes,
            extracted_text=row.extracted_text,
        )
    msg = f"unsupported content row: {type(row).__name__}"
    raise TypeError(msg)


def to_item(row: SQLModel) -> ContentItem:
    return ContentItem(
        id=row.id,  # type: ignore[attr-defined]
        knowledge_source_id=row.knowledge_source_id,  # type: ignore[attr-defined]
        payload=to_payload(row),
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class SqlContentStore:
    """Read and write content rows; every call runs its session in a worker thread."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    async def get_knowledge_source(self, knowledge_source_id: UUID) -> KnowledgeSourceInfo | None:
        return await asyncio.to_thread(self._get_knowledge_source_sync, knowledge_source_id)

    def _get_knowledge_source_sync(self, knowledge_source_id: UUID) -> KnowledgeSourceInfo | None:
        with session_scope(self._engine) as session:
            source = session.get(KnowledgeSource, knowledge_source_id)
            if source is None:
                return None
            return KnowledgeSourceInfo(
                id=source.id,
                owner_id=source.owner_id,
                name=source.name,
                embedding_model=source.embedding_model,
                embedding_dimensions=source.embedding_dimensions,
            )

    async def create_knowledge_source(
        self,
        *,
        owner_id: str,
        name: str,
        embedding_model: str = "text-embedding-3-small",
        embedding_dimensions: int | None = None,
    ) -> KnowledgeSourceInfo:
        return await asyncio.to_thread(
            self._create_knowledge_source_sync,
            owner_id,
            name,
            embedding_model,
            embedding_dimensions,
        )

    def _create_knowledge_source_sync(
        self,
        owner_id: str,
        name: str,
        embedding_model: str,
        embedding_dimensions: int | None,
    ) -> KnowledgeSourceInfo:
        with session_scope(self._engine) as session:
            source = KnowledgeSource(
                owner_id=owner_id,
                name=name,
                embedding_model=embedding_model,
                embedding_dimensions=embedding_dimensions,
            )
            session.add(source)
            session.flush()
            return KnowledgeSourceInfo(
                id=source.id,
                owner_id=source.owner_id,
                name=source.name,
                embedding_model=source.embedding_model,
                embedding_dimensions=source.embedding_dimensions,
            )

    async def insert(
        self, knowledge_source_id: UUID, content_id: UUID, payload: StoredPayload
    ) -> ContentItem:
        return await asyncio.to_thread(self._insert_sync, knowledge_source_id, content_id, payload)

    def _insert_sync(
        self, knowledge_source_id: UUID, content_id: UUID, payload: StoredPayload
    ) -> ContentItem:
        model = CONTENT_MODELS[payload.kind]
        with session_scope(self._engine) as session:
            row = model(
                id=content_id,
                knowledge_source_id=knowledge_source_id,
                **payload_fields(payload),
            )
            session.add(row)
            session.flush()
            return to_item(row)

    async def get(self, content_type: ContentType, content_id: UUID) -> ContentItem | None:
        return await asyncio.to_thread(self._get_sync, content_type, content_id)

    def _get_sync(self, content_type: ContentType, content_id: UUID) -> ContentItem | None:
        with session_scope(self._engine) as session:
            row = session.get(CONTENT_MODELS[content_type.value], content_id)
            return to_item(row) if row is not None else None

    async def replace(self, item: ContentItem, payload: StoredPayload) -> ContentItem:
        return await asyncio.to_thread(self._replace_sync, item, payload)

    def _replace_sync(self, item: ContentItem, payload: StoredPayload) -> ContentItem:
        if payload.kind != item.content_type.value:
            msg = "payload kind does not match the stored content type"
            raise ValueError(msg)
        with session_scope(self._engine) as session:
            row = session.get(CONTENT_MODELS[payload.kind], item.id)
            if row is None:
                msg = f"content {item.id} no longer exists"
                raise LookupError(msg)
            for field, value in payload_fields(payload).items():
                setattr(row, field, value)
            row.updated_at = datetime.now(tz=UTC)  # type: ignore[attr-defined]
            session.add(row)
            session.flush()
            return to_item(row)

    async def delete(self, content_type: ContentType, content_id: UUID) -> bool:
        return await asyncio.to_thread(self._delete_sync, content_type, content_id)

    def _delete_sync(self, content_type: ContentType, content_id: UUID) -> bool:
        with session_scope(self._engine) as session:
            row = session.get(CONTENT_MODELS[content_type.value], content_id)
            if row is None:
                return False
            session.delete(row)
            return True

    async def record_extracted_text(self, content_id: UUID, text: str) -> None:
        await asyncio.to_thread(self._record_extracted_text_sync, content_id, text)

    def _record_extracted_text_sync(self, content_id: UUID, text: str) -> None:
        with session_scope(self._engine) as session:
            row = session.get(FileContent, content_id)
            if row is None:
                return
            row.extracted_text = text
            row.updated_at = datetime.now(tz=UTC)
            session.add(row)
