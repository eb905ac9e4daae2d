"""Embedding job queue and its three backends."""

from .base import QueueBackend
from .direct import DirectScanBackend
from .fallback import MarkerTableBackend
from .primary import RedisStreamBackend
from .repository import SqlJobRepository
from .service import EmbeddingJobQueue

__all__ = [
    "DirectScanBackend",
    "EmbeddingJobQueue",
    "MarkerTableBackend",
    "QueueBackend",
    "RedisStreamBackend",
    "SqlJobRepository",
]
