"""Embedding service with OpenAI and sentence-transformers backends."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from openai import BadRequestError

from knowledge_pipeline.core.config import EmbeddingConfig, EmbeddingProvider, OpenAISettings
from knowledge_pipeline.ingestion.errors import EmbeddingError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class EmbeddingSettings:
    """Runtime settings for embedding generation."""

    provider: EmbeddingProvider = EmbeddingProvider.OPENAI
    openai_model: str = "text-embedding-3-small"
    sentence_transformer_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    openai_api_key: str | None = None
    openai_timeout: float = 30.0
    fallback_to_local: bool = True

    @classmethod
    def from_config(cls, embedding: EmbeddingConfig, openai: OpenAISettings) -> EmbeddingSettings:
        return cls(
            provider=embedding.provider,
            openai_model=openai.embedding_model,
            sentence_transformer_model=embedding.sentence_transformer_model,
            openai_api_key=openai.api_key,
            openai_timeout=openai.timeout_seconds,
            fallback_to_local=embedding.fallback_to_local,
        )


class EmbeddingService:
    """Generate embeddings with the configured provider."""

    def __init__(self, settings: EmbeddingSettings) -> None:
        self._settings = settings
        self._openai_async_client: Any | None = None
        self._st_model: Any | None = None

    @property
    def settings(self) -> EmbeddingSettings:
        return self._settings

    async def embed_async(
        self, texts: Sequence[str], *, model: str | None = None
    ) -> list[list[float]]:
        """Embed ``texts`` with ``model`` or the provider's default model.

        The local fallback is only used for the default model: vectors for an
        explicitly requested model must come from that model.
        """

        if not texts:
            return []

        if self._settings.provider is EmbeddingProvider.OPENAI:
            requested = model or self._settings.openai_model
            try:
                return await self._embed_with_openai_async(texts, requested)
            except BadRequestError:
                raise
            except Exception as exc:
                if self._settings.fallback_to_local and requested == self._settings.openai_model:
                    logger.warning(
                        "openai embeddings unavailable; using sentence-transformer fallback",
                        extra={"error": str(exc)},
                    )
                    return await self._embed_with_sentence_transformer_async(texts)
                raise

        return await self._embed_with_sentence_transformer_async(texts)

    async def _embed_with_openai_async(
        self, texts: Sequence[str], model: str
    ) -> list[list[float]]:
        client = self._load_openai_async_client()
        response = await client.embeddings.create(input=list(texts), model=model)
        return [list(map(float, item.embedding)) for item in response.data]

    async def _embed_with_sentence_transformer_async(
        self, texts: Sequence[str]
    ) -> list[list[float]]:
        model = self._load_sentence_transformer()
        vectors = await asyncio.to_thread(
            model.encode, list(texts), convert_to_numpy=False, normalize_embeddings=True
        )
        return [list(map(float, vector)) for vector in vectors]

    def _load_openai_async_client(self) -> Any:
        from openai import AsyncOpenAI

        if not self._settings.openai_api_key:
            raise RuntimeError("openai_api_key must be provided for OpenAI embeddings")

        if self._openai_async_client is None:
            self._openai_async_client = AsyncOpenAI(
                api_key=self._settings.openai_api_key,
                timeout=self._settings.openai_timeout,
            )
        return self._openai_async_client

    def _load_sentence_transformer(self) -> Any:
        from sentence_transformers import SentenceTransformer

        if self._st_model is None:
            logger.info(
                "loading sentence-transformer model",
                extra={"model": self._settings.sentence_transformer_model},
            )
            self._st_model = SentenceTransformer(self._settings.sentence_transformer_model)
        return self._st_model


class AsyncEmbeddingAdapter:
    """Expose the embedding service with the worker's single-text interface."""

    def __init__(self, service: EmbeddingService) -> None:
        self._service = service

    async def embed(self, text: str, model: str | None = None) -> list[float]:
        try:
            vectors = await self._service.embed_async([text], model=model)
        except RuntimeError as exc:
            raise EmbeddingError(str(exc), retryable=False) from exc
        except BadRequestError as exc:
            raise EmbeddingError("embedding request rejected by provider", retryable=False) from exc
        except Exception as exc:
            raise EmbeddingError("embedding provider request failed", retryable=True) from exc

        if not vectors:
            raise EmbeddingError("embedding provider returned no vectors")
        return vectors[0]
