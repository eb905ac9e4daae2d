"""Custom exception types for ingestion and embedding."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class CompensationFailure:
    """A compensating action that could not be completed."""

    stage: str
    target: str
    error: str


@dataclass(eq=False)
class IngestionError(Exception):
    """Base exception providing retry metadata."""

    message: str
    retryable: bool = True
    compensation_failures: tuple[CompensationFailure, ...] = field(default=())

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.message

    @property
    def needs_reconciliation(self) -> bool:
        """True when a rollback left state that an operator has to clean up."""

        return bool(self.compensation_failures)

    def as_dict(self) -> dict[str, object]:
        return {
            "message": self.message,
            "retryable": self.retryable,
            "needs_reconciliation": self.needs_reconciliation,
            "compensation_failures": [
                {"stage": item.stage, "target": item.target, "error": item.error}
                for item in self.compensation_failures
            ],
        }


class StorageError(IngestionError):
    """Raised when an object store write, read or delete fails."""


class DatabaseError(IngestionError):
    """Raised when the content store rejects a write."""


class QueueError(IngestionError):
    """Raised when an embedding job cannot be registered or updated."""


class QueueUnavailableError(QueueError):
    """Raised by a queue backend that cannot currently serve claims."""


class ExtractionError(IngestionError):
    """Raised when text extraction from a file fails."""


class NormalizationError(IngestionError):
    """Raised when content cannot be turned into embeddable text."""


class EmbeddingError(IngestionError):
    """Raised when embedding generation fails."""


class PersistenceError(IngestionError):
    """Raised when vector index persistence fails."""
