"""Knowledge source and content endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

import pydantic
from fastapi import APIRouter, File, Response, UploadFile, status

from knowledge_pipeline.core.domain import ContentType, FileUpload
from knowledge_pipeline.core.errors import ValidationError

from .. import schemas
from ..dependencies import PipelineDep

router = APIRouter(prefix="/v1/knowledge-sources", tags=["knowledge"])


@router.post(
    "",
    response_model=schemas.ResponseEnvelope[schemas.KnowledgeSourceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_knowledge_source(
    body: schemas.KnowledgeSourceCreate,
    pipeline: PipelineDep,
) -> schemas.ResponseEnvelope[schemas.KnowledgeSourceResponse]:
    info = await pipeline.content_store.create_knowledge_source(
        owner_id=body.owner_id,
        name=body.name,
        embedding_model=body.embedding_model,
        embedding_dimensions=body.embedding_dimensions,
    )
    return schemas.ResponseEnvelope(data=schemas.KnowledgeSourceResponse.from_info(info))


@router.post(
    "/{knowledge_source_id}/content",
    response_model=schemas.ResponseEnvelope[schemas.ContentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_content(
    knowledge_source_id: UUID,
    body: schemas.InlineContent,
    pipeline: PipelineDep,
) -> schemas.ResponseEnvelope[schemas.ContentResponse]:
    """Ingest text, QA or website content and schedule it for embedding."""

    item = await pipeline.orchestrator.ingest(knowledge_source_id, body)
    return schemas.ResponseEnvelope(data=schemas.ContentResponse.from_item(item))


@router.post(
    "/{knowledge_source_id}/files",
    response_model=schemas.ResponseEnvelope[schemas.ContentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def upload_file(
    knowledge_source_id: UUID,
    file: Annotated[UploadFile, File(...)],
    pipeline: PipelineDep,
) -> schemas.ResponseEnvelope[schemas.ContentResponse]:
    """Store an uploaded file and schedule text extraction and embedding."""

    data = await file.read()
    try:
        upload = FileUpload(
            filename=file.filename or "upload",
            mime_type=file.content_type or "application/octet-stream",
            data=data,
        )
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "invalid file upload",
            details={
                "errors": exc.errors(
                    include_url=False, include_context=False, include_input=False
                )
            },
        ) from exc

    item = await pipeline.orchestrator.ingest(knowledge_source_id, upload)
    return schemas.ResponseEnvelope(data=schemas.ContentResponse.from_item(item))


@router.patch(
    "/{knowledge_source_id}/content/{content_type}/{content_id}",
    response_model=schemas.ResponseEnvelope[schemas.ContentResponse],
)
async def update_content(
    knowledge_source_id: UUID,
    content_type: ContentType,
    content_id: UUID,
    body: schemas.InlineContent,
    pipeline: PipelineDep,
) -> schemas.ResponseEnvelope[schemas.ContentResponse]:
    item = await pipeline.orchestrator.update(knowledge_source_id, content_type, content_id, body)
    return schemas.ResponseEnvelope(data=schemas.ContentResponse.from_item(item))


@router.delete(
    "/{knowledge_source_id}/content/{content_type}/{content_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_content(
    knowledge_source_id: UUID,
    content_type: ContentType,
    content_id: UUID,
    pipeline: PipelineDep,
) -> Response:
    await pipeline.orchestrator.delete(knowledge_source_id, content_type, content_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{knowledge_source_id}/search",
    response_model=schemas.ResponseEnvelope[list[schemas.SearchHitResponse]],
)
async def search_content(
    knowledge_source_id: UUID,
    body: schemas.SearchRequest,
    pipeline: PipelineDep,
) -> schemas.ResponseEnvelope[list[schemas.SearchHitResponse]]:
    hits = await pipeline.search.search(
        knowledge_source_id,
        body.query,
        limit=body.limit,
        content_types=body.content_types,
    )
    return schemas.ResponseEnvelope(data=[schemas.SearchHitResponse.from_hit(hit) for hit in hits])
