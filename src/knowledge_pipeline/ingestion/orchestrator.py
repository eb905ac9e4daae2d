"""Ingestion orchestrator coordinating object storage, the content store and the job queue.

Writes span three systems that fail independently. Every completed stage is
recorded in a request-local :class:`CheckpointLog`; when a later stage fails
the log undoes the earlier stages in reverse order before the error reaches
the caller.

A stage that exceeds the stage timeout is abandoned, not stopped: work handed
to a thread or a remote service may still complete. Such a stage carries its
own undo, which runs if the abandoned call eventually succeeds.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from functools import partial
from typing import TypeVar
from uuid import UUID, uuid4

from prometheus_client import Counter

from knowledge_pipeline.core.domain import (
    ContentItem,
    ContentType,
    FileReference,
    FileUpload,
    IngestPayload,
    KnowledgeSourceInfo,
    StoredPayload,
)
from knowledge_pipeline.core.errors import CoreError, NotFoundError, ValidationError
from knowledge_pipeline.utils.retry import RetryConfig, call_with_retry
from knowledge_pipeline.utils.tracing import new_operation_id

from .checkpoints import CheckpointLog, CheckpointStage
from .errors import (
    DatabaseError,
    IngestionError,
    PersistenceError,
    QueueError,
    StorageError,
)
from .models import ContentKey
from .ports import ContentStore, JobRegistry, ObjectStore, VectorIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")
Undo = Callable[[], Awaitable[object]]

INGEST_REQUESTS = Counter(
    "knowledge_ingest_requests_total",
    "Ingestion requests by content type and outcome.",
    ["content_type", "outcome"],
)
LATE_STAGE_REVERSALS = Counter(
    "knowledge_late_stage_reversals_total",
    "Abandoned stages that completed after their timeout, by reversal outcome.",
    ["stage", "outcome"],
)

_FILENAME_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")


def build_object_path(
    prefix: str, knowledge_source_id: UUID, content_id: UUID, filename: str | None
) -> str:
    """Return the object-store key for an uploaded file."""

    cleaned = _FILENAME_PATTERN.sub("_", filename or "upload").strip("._") or "upload"
    return f"{prefix.strip('/')}/{knowledge_source_id}/{content_id}/{cleaned}"


class IngestionOrchestrator:
    """Create, update and delete knowledge content without leaving orphans behind."""

    def __init__(
        self,
        *,
        content_store: ContentStore,
        object_store: ObjectStore,
        job_registry: JobRegistry,
        vector_index: VectorIndex | None = None,
        stage_timeout: float = 30.0,
        storage_prefix: str = "knowledge",
        compensation_retry: RetryConfig | None = None,
    ) -> None:
        self._content_store = content_store
        self._object_store = object_store
        self._jobs = job_registry
        self._vector_index = vector_index
        self._stage_timeout = stage_timeout
        self._storage_prefix = storage_prefix
        self._compensation_retry = compensation_retry
        self._late_tasks: set[asyncio.Future] = set()

    async def ingest(self, knowledge_source_id: UUID, payload: IngestPayload) -> ContentItem:
        """Persist new content and register an embedding job for it."""

        content_type = payload.content_type
        await self._require_source(knowledge_source_id)

        content_id = uuid4()
        checkpoints = self._checkpoints(f"ingest-{content_type.value}")
        try:
            item = await self._run_ingest(checkpoints, knowledge_source_id, content_id, payload)
        except IngestionError as exc:
            INGEST_REQUESTS.labels(content_type.value, exc.__class__.__name__).inc()
            raise
        except asyncio.CancelledError:
            await checkpoints.rollback("ingestion cancelled")
            INGEST_REQUESTS.labels(content_type.value, "cancelled").inc()
            raise

        INGEST_REQUESTS.labels(content_type.value, "success").inc()
        return item

    async def _run_ingest(
        self,
        checkpoints: CheckpointLog,
        knowledge_source_id: UUID,
        content_id: UUID,
        payload: IngestPayload,
    ) -> ContentItem:
        content_type = payload.content_type
        stored: StoredPayload

        if isinstance(payload, FileUpload):
            path = build_object_path(
                self._storage_prefix, knowledge_source_id, content_id, payload.filename
            )
            try:
                await self._stage(
                    CheckpointStage.OBJECT,
                    self._object_store.put(path, payload.data, payload.mime_type),
                    undo=lambda: self._object_store.delete(path),
                )
            except Exception as exc:
                logger.warning(
                    "object upload failed",
                    extra={"operation_id": checkpoints.operation_id, "path": path},
                )
                raise StorageError(
                    "failed to store file in object storage", retryable=_retryable(exc)
                ) from exc
            checkpoints.record(
                CheckpointStage.OBJECT,
                {"path": path},
                compensate=lambda: self._bounded(self._object_store.delete(path)),
            )
            stored = FileReference(
                storage_path=path,
                mime_type=payload.mime_type,
                filename=payload.filename,
                size_bytes=len(payload.data),
            )
        else:
            stored = payload

        try:
            item = await self._stage(
                CheckpointStage.DATABASE,
                self._content_store.insert(knowledge_source_id, content_id, stored),
                undo=lambda: self._content_store.delete(content_type, content_id),
            )
        except Exception as exc:
            error = DatabaseError("failed to store content item", retryable=_retryable(exc))
            raise await self._abort(checkpoints, error, exc) from exc
        checkpoints.record(
            CheckpointStage.DATABASE,
            {"variant": content_type.value, "record_id": str(item.id)},
            compensate=lambda: self._bounded(self._content_store.delete(content_type, item.id)),
        )

        try:
            job_id = await self._stage(
                CheckpointStage.VECTOR,
                self._jobs.enqueue(knowledge_source_id, item.id, content_type),
                undo=lambda: self._jobs.discard(
                    ContentKey(knowledge_source_id, item.id, content_type)
                ),
            )
        except Exception as exc:
            error = QueueError("failed to register embedding job", retryable=_retryable(exc))
            raise await self._abort(checkpoints, error, exc) from exc
        checkpoints.record(CheckpointStage.VECTOR, {"job_id": str(job_id)})

        checkpoints.clear()
        logger.info(
            "content ingested",
            extra={
                "operation_id": checkpoints.operation_id,
                "content_id": str(item.id),
                "content_type": content_type.value,
                "job_id": str(job_id),
            },
        )
        return item

    async def update(
        self,
        knowledge_source_id: UUID,
        content_type: ContentType,
        content_id: UUID,
        payload: StoredPayload,
    ) -> ContentItem:
        """Rewrite a text, QA or website item and schedule it for re-embedding."""

        if content_type is ContentType.FILE or isinstance(payload, (FileUpload, FileReference)):
            raise ValidationError("files cannot be updated in place; delete and upload again")
        if payload.content_type is not content_type:
            raise ValidationError(
                "payload kind does not match content type",
                details={"expected": content_type.value, "received": payload.kind},
            )

        item = await self._require_item(knowledge_source_id, content_type, content_id)
        checkpoints = self._checkpoints(f"update-{content_type.value}")

        try:
            updated = await self._stage(
                CheckpointStage.DATABASE,
                self._content_store.replace(item, payload),
                undo=lambda: self._content_store.replace(item, item.payload),
            )
        except Exception as exc:
            raise DatabaseError(
                "failed to update content item", retryable=_retryable(exc)
            ) from exc
        checkpoints.record(
            CheckpointStage.DATABASE,
            {"variant": content_type.value, "record_id": str(item.id)},
            compensate=lambda: self._bounded(self._content_store.replace(item, item.payload)),
        )

        try:
            job_id = await self._bounded(
                self._jobs.enqueue(knowledge_source_id, item.id, content_type)
            )
        except Exception as exc:
            error = QueueError("failed to register embedding job", retryable=_retryable(exc))
            raise await self._abort(checkpoints, error, exc) from exc
        checkpoints.record(CheckpointStage.VECTOR, {"job_id": str(job_id)})
        checkpoints.clear()
        return updated

    async def delete(
        self, knowledge_source_id: UUID, content_type: ContentType, content_id: UUID
    ) -> None:
        """Remove content from every system, deleting the object before the record.

        Stops at the first failing stage so a surviving record never points at a
        deleted object.
        """

        item = await self._require_item(knowledge_source_id, content_type, content_id)
        key = ContentKey(knowledge_source_id, content_id, content_type)

        try:
            await self._bounded(self._jobs.discard(key))
        except Exception as exc:
            raise QueueError("failed to discard embedding jobs", retryable=_retryable(exc)) from exc

        if self._vector_index is not None:
            try:
                await self._bounded(self._vector_index.delete(key))
            except Exception as exc:
                raise PersistenceError(
                    "failed to delete vector document", retryable=_retryable(exc)
                ) from exc

        if isinstance(item.payload, FileReference) and item.payload.storage_path:
            try:
                await self._bounded(self._object_store.delete(item.payload.storage_path))
            except Exception as exc:
                raise StorageError(
                    "failed to delete file from object storage", retryable=_retryable(exc)
                ) from exc

        try:
            await self._bounded(self._content_store.delete(content_type, content_id))
        except Exception as exc:
            raise DatabaseError(
                "failed to delete content item", retryable=_retryable(exc)
            ) from exc

        logger.info("content deleted", extra={"content": str(key)})

    async def _abort(
        self, checkpoints: CheckpointLog, error: IngestionError, cause: BaseException
    ) -> IngestionError:
        report = await checkpoints.rollback(f"{error.message}: {cause!r}")
        error.compensation_failures = tuple(report.failures)
        return error

    async def _require_source(self, knowledge_source_id: UUID) -> KnowledgeSourceInfo:
        try:
            source = await self._bounded(
                self._content_store.get_knowledge_source(knowledge_source_id)
            )
        except Exception as exc:
            raise DatabaseError(
                "failed to load knowledge source", retryable=_retryable(exc)
            ) from exc
        if source is None:
            raise NotFoundError.knowledge_source(knowledge_source_id)
        return source

    async def _require_item(
        self, knowledge_source_id: UUID, content_type: ContentType, content_id: UUID
    ) -> ContentItem:
        try:
            item = await self._bounded(self._content_store.get(content_type, content_id))
        except Exception as exc:
            raise DatabaseError(
                "failed to load content item", retryable=_retryable(exc)
            ) from exc
        if item is None or item.knowledge_source_id != knowledge_source_id:
            raise NotFoundError.content_item(content_type, content_id)
        return item

    def _checkpoints(self, prefix: str) -> CheckpointLog:
        return CheckpointLog(new_operation_id(prefix), retry=self._compensation_retry)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for abandoned stages to settle and their late effects to be reversed."""

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._late_tasks:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            _, pending = await asyncio.wait(set(self._late_tasks), timeout=remaining)
            if pending and deadline is not None and loop.time() >= deadline:
                logger.warning(
                    "abandoned ingestion stages still running", extra={"count": len(pending)}
                )
                return

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._stage_timeout)

    async def _stage(self, stage: CheckpointStage, awaitable: Awaitable[T], *, undo: Undo) -> T:
        """Await a write within the stage timeout, reversing it if it lands after we gave up."""

        task = asyncio.ensure_future(awaitable)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._stage_timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            task.add_done_callback(partial(self._after_abandoned_stage, stage, undo))
            self._track(task)
            raise

    def _after_abandoned_stage(
        self, stage: CheckpointStage, undo: Undo, task: asyncio.Future
    ) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        logger.warning("abandoned stage completed late; reversing it", extra={"stage": stage.value})
        self._track(asyncio.ensure_future(self._reverse_late(stage, undo)))

    async def _reverse_late(self, stage: CheckpointStage, undo: Undo) -> None:
        try:
            await call_with_retry(
                lambda: self._bounded(undo()),
                config=self._compensation_retry or RetryConfig(attempts=3),
            )
        except Exception:
            LATE_STAGE_REVERSALS.labels(stage.value, "failed").inc()
            logger.exception(
                "late stage could not be reversed; manual reconciliation required",
                extra={"stage": stage.value},
            )
            return
        LATE_STAGE_REVERSALS.labels(stage.value, "reversed").inc()

    def _track(self, task: asyncio.Future) -> None:
        self._late_tasks.add(task)
        task.add_done_callback(self._late_tasks.discard)


def _retryable(exc: BaseException) -> bool:
    if isinstance(exc, IngestionError):
        return exc.retryable
    return not isinstance(exc, (CoreError, ValueError))
