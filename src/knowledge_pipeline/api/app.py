"""FastAPI application factory for the knowledge pipeline service."""

from __future__ import annotations

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from knowledge_pipeline.core.errors import CoreError
from knowledge_pipeline.core.logging import configure_logging
from knowledge_pipeline.core.middleware import RequestContextMiddleware, metrics_response
from knowledge_pipeline.core.telemetry import init_telemetry, instrument_fastapi_app
from knowledge_pipeline.ingestion.errors import (
    IngestionError,
    QueueUnavailableError,
    StorageError,
)

from . import schemas
from .dependencies import SettingsDep, close_pipeline, get_settings
from .routers import content, embeddings

logger = logging.getLogger(__name__)

SERVICE_NAME = "knowledge_pipeline"


def ingestion_status(exc: IngestionError) -> int:
    """HTTP status for an ingestion failure: 503 when a backing system is unavailable."""

    if exc.retryable and isinstance(exc, (QueueUnavailableError, StorageError)):
        return int(HTTPStatus.SERVICE_UNAVAILABLE)
    return int(HTTPStatus.BAD_GATEWAY)


def ingestion_problem(exc: IngestionError) -> dict[str, object]:
    status_code = ingestion_status(exc)
    code = type(exc).__name__
    return {
        "type": f"urn:knowledge-pipeline:error:{code}",
        "title": exc.message,
        "status": status_code,
        "code": code,
        **exc.as_dict(),
    }


async def _core_error_handler(_: Request, exc: CoreError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def _ingestion_error_handler(_: Request, exc: IngestionError) -> JSONResponse:
    if exc.needs_reconciliation:
        logger.error(
            "ingestion failed with incomplete rollback",
            extra={"error": exc.message, "failures": len(exc.compensation_failures)},
        )
    return JSONResponse(ingestion_problem(exc), status_code=ingestion_status(exc))


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    configure_logging()
    init_telemetry(SERVICE_NAME, settings.telemetry)

    app = FastAPI(title="Knowledge Pipeline Service", version="0.1.0")

    instrument_fastapi_app(app)
    app.add_middleware(RequestContextMiddleware, service_name=SERVICE_NAME)
    app.add_exception_handler(CoreError, _core_error_handler)
    app.add_exception_handler(IngestionError, _ingestion_error_handler)

    @app.get("/health", response_model=schemas.HealthResponse, tags=["health"])
    def health(_: SettingsDep) -> schemas.HealthResponse:
        return schemas.HealthResponse()

    app.include_router(content.router)
    app.include_router(embeddings.router)

    @app.get("/metrics")
    async def metrics() -> Response:
        return metrics_response()

    @app.on_event("shutdown")
    async def shutdown_pipeline() -> None:
        await close_pipeline()

    return app
