"""Knowledge ingestion: orchestrated writes, the embedding job queue and the worker."""

from .checkpoints import CheckpointLog, CheckpointStage, OperationCheckpoint, RollbackReport
from .errors import (
    CompensationFailure,
    DatabaseError,
    EmbeddingError,
    ExtractionError,
    IngestionError,
    NormalizationError,
    PersistenceError,
    QueueError,
    QueueUnavailableError,
    StorageError,
)
from .models import (
    ClaimedJob,
    ClaimResult,
    ContentKey,
    CycleReport,
    EmbeddingJobRecord,
    JobOutcome,
    QueueBackendName,
    SearchHit,
    VectorDocument,
)
from .normalizer import ContentNormalizer, render_text
from .orchestrator import IngestionOrchestrator
from .queue import EmbeddingJobQueue
from .search import KnowledgeSearch
from .worker import EmbeddingWorker

__all__ = [
    "CheckpointLog",
    "CheckpointStage",
    "ClaimResult",
    "ClaimedJob",
    "CompensationFailure",
    "ContentKey",
    "ContentNormalizer",
    "CycleReport",
    "DatabaseError",
    "EmbeddingError",
    "EmbeddingJobQueue",
    "EmbeddingJobRecord",
    "EmbeddingWorker",
    "ExtractionError",
    "IngestionError",
    "IngestionOrchestrator",
    "JobOutcome",
    "KnowledgeSearch",
    "NormalizationError",
    "OperationCheckpoint",
    "PersistenceError",
    "QueueBackendName",
    "QueueError",
    "QueueUnavailableError",
    "RollbackReport",
    "SearchHit",
    "StorageError",
    "VectorDocument",
    "render_text",
]
