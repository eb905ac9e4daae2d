from __future__ import annotations

from uuid import uuid4

import pytest

from knowledge_pipeline.core.domain import ContentType
from knowledge_pipeline.core.errors import NotFoundError, ValidationError

pytestmark = pytest.mark.unit


def test_not_found_content_item_names_the_item() -> None:
    content_id = uuid4()

    error = NotFoundError.content_item(ContentType.WEBSITE, content_id)

    assert error.status_code == 404
    assert error.to_dict() == {
        "type": "urn:knowledge-pipeline:error:not_found",
        "title": "content item not found",
        "status": 404,
        "code": "not_found",
        "details": {"content_type": "website", "content_id": str(content_id)},
    }


def test_not_found_embedding_job_carries_job_id() -> None:
    job_id = uuid4()

    error = NotFoundError.embedding_job(job_id)

    assert error.details == {"job_id": str(job_id)}
    assert str(error) == "embedding job not found"


def test_validation_error_omits_empty_details() -> None:
    payload = ValidationError("file content cannot be updated in place").to_dict()

    assert payload["status"] == 422
    assert "details" not in payload
