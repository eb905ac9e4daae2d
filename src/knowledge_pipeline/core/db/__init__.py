"""Database models and helpers for the knowledge pipeline."""

from . import models, session
from .models import (
    EmbeddingJob,
    EmbeddingJobStatus,
    EmbeddingQueueMarker,
    FileContent,
    KnowledgeSource,
    QAContent,
    TextContent,
    WebsiteContent,
)
from .session import create_engine_from_settings, init_db, session_scope

__all__ = [
    "models",
    "session",
    "KnowledgeSource",
    "TextContent",
    "QAContent",
    "WebsiteContent",
    "FileContent",
    "EmbeddingJob",
    "EmbeddingJobStatus",
    "EmbeddingQueueMarker",
    "create_engine_from_settings",
    "init_db",
    "session_scope",
]
