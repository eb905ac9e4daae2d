"""Errors a caller can act on: a missing knowledge resource or a rejected request.

Failures of the storage systems behind the pipeline are not modelled here;
they live in :mod:`knowledge_pipeline.ingestion.errors` and carry a retry hint
and any compensations that could not be applied.
"""

from __future__ import annotations

from collections.abc import Mapping
from http import HTTPStatus
from typing import Any
from uuid import UUID

from knowledge_pipeline.core.domain import ContentType


class CoreError(Exception):
    """Problem-details error raised before any external system is touched."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        code: str = "core_error",
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)
        self.code = code
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": f"urn:knowledge-pipeline:error:{self.code}",
            "title": self.message,
            "status": self.status_code,
            "code": self.code,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(CoreError):
    """A knowledge source, content item or embedding job does not exist for the caller."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(
            message,
            status_code=HTTPStatus.NOT_FOUND,
            code="not_found",
            details=details,
        )

    @classmethod
    def knowledge_source(cls, knowledge_source_id: UUID) -> NotFoundError:
        return cls(
            "knowledge source not found",
            details={"knowledge_source_id": str(knowledge_source_id)},
        )

    @classmethod
    def content_item(cls, content_type: ContentType, content_id: UUID) -> NotFoundError:
        return cls(
            "content item not found",
            details={"content_type": content_type.value, "content_id": str(content_id)},
        )

    @classmethod
    def embedding_job(cls, job_id: UUID) -> NotFoundError:
        return cls("embedding job not found", details={"job_id": str(job_id)})


class ValidationError(CoreError):
    """Content or a query the pipeline refuses to accept, e.g. an in-place file update."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(
            message,
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            code="validation_error",
            details=details,
        )
