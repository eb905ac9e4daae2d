"""Similarity search over a knowledge source's vector documents."""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from knowledge_pipeline.core.domain import ContentType
from knowledge_pipeline.core.errors import NotFoundError, ValidationError

from .errors import EmbeddingError, IngestionError
from .models import SearchHit
from .ports import ContentStore, EmbeddingAdapter, VectorIndex


class KnowledgeSearch:
    """Embed a query with the source's model and look up the nearest documents."""

    def __init__(
        self,
        *,
        content_store: ContentStore,
        embedder: EmbeddingAdapter,
        vector_index: VectorIndex,
    ) -> None:
        self._content_store = content_store
        self._embedder = embedder
        self._vector_index = vector_index

    async def search(
        self,
        knowledge_source_id: UUID,
        query: str,
        *,
        limit: int = 5,
        content_types: Sequence[ContentType] | None = None,
    ) -> list[SearchHit]:
        if not query.strip():
            raise ValidationError("query must not be blank")

        source = await self._content_store.get_knowledge_source(knowledge_source_id)
        if source is None:
            raise NotFoundError.knowledge_source(knowledge_source_id)

        try:
            vector = await self._embedder.embed(query, model=source.embedding_model)
        except IngestionError:
            raise
        except Exception as exc:
            raise EmbeddingError("failed to embed search query") from exc

        return await self._vector_index.search(
            knowledge_source_id, vector, limit=limit, content_types=content_types
        )
