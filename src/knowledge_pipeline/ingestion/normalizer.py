"""Turn stored content into the plain text that gets embedded."""

from __future__ import annotations

from knowledge_pipeline.core.domain import (
    ContentItem,
    FileReference,
    QAPayload,
    StoredPayload,
    TextPayload,
    WebsitePayload,
)

from .errors import ExtractionError, NormalizationError, StorageError
from .ports import ExtractionAdapter, ObjectStore


def render_text(payload: StoredPayload) -> str:
    """Render a text, QA or website payload. Files need extraction, see :class:`ContentNormalizer`."""

    if isinstance(payload, TextPayload):
        return payload.body
    if isinstance(payload, QAPayload):
        return f"Question: {payload.question or ''}\n\nAnswer: {payload.answer or ''}"
    if isinstance(payload, WebsitePayload):
        reference = f"Website: {payload.url or ''}"
        if payload.title:
            return f"{payload.title}\n{reference}"
        return reference
    raise NormalizationError(
        f"cannot render payload of type {type(payload).__name__}", retryable=False
    )


class ContentNormalizer:
    """Normalize any content variant, delegating files to the extraction adapter."""

    def __init__(self, *, object_store: ObjectStore, extractor: ExtractionAdapter) -> None:
        self._object_store = object_store
        self._extractor = extractor

    async def normalize(self, item: ContentItem) -> str:
        payload = item.payload
        if isinstance(payload, FileReference):
            text = await self._extract(payload)
        else:
            text = render_text(payload)

        if not text.strip():
            raise NormalizationError("content is empty after normalization", retryable=False)
        return text

    async def _extract(self, payload: FileReference) -> str:
        if not payload.storage_path:
            raise NormalizationError("file content has no storage path", retryable=False)

        try:
            data = await self._object_store.get(payload.storage_path)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"failed to read {payload.storage_path}") from exc

        try:
            return await self._extractor.extract(data, payload.mime_type)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(f"text extraction failed for {payload.filename}") from exc
