"""Concrete implementations of the ingestion ports."""

from .content_store import SqlContentStore
from .embedding import AsyncEmbeddingAdapter, EmbeddingService, EmbeddingSettings
from .extraction import TikaExtractionAdapter
from .s3 import S3ObjectStore
from .vector_index import InMemoryVectorIndex, QdrantVectorIndex

__all__ = [
    "AsyncEmbeddingAdapter",
    "EmbeddingService",
    "EmbeddingSettings",
    "InMemoryVectorIndex",
    "QdrantVectorIndex",
    "S3ObjectStore",
    "SqlContentStore",
    "TikaExtractionAdapter",
]
