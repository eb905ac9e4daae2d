"""Embedding worker trigger and job inspection endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from knowledge_pipeline.core.errors import NotFoundError

from .. import schemas
from ..dependencies import PipelineDep

router = APIRouter(prefix="/v1/embeddings", tags=["embeddings"])


@router.post("/cycles", response_model=schemas.ResponseEnvelope[schemas.CycleResponse])
async def run_cycle(
    pipeline: PipelineDep,
    body: schemas.CycleRequest | None = None,
) -> schemas.ResponseEnvelope[schemas.CycleResponse]:
    """Run one embedding cycle on demand."""

    batch_size = body.batch_size if body is not None else None
    report = await pipeline.run_cycle(batch_size)
    return schemas.ResponseEnvelope(data=schemas.CycleResponse.from_report(report))


@router.get("/jobs/{job_id}", response_model=schemas.ResponseEnvelope[schemas.JobResponse])
async def get_job(
    job_id: UUID, pipeline: PipelineDep
) -> schemas.ResponseEnvelope[schemas.JobResponse]:
    record = await pipeline.queue.get_job(job_id)
    if record is None:
        raise NotFoundError.embedding_job(job_id)
    return schemas.ResponseEnvelope(data=schemas.JobResponse.from_record(record))
