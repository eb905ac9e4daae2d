"""Embedding worker: claims a batch of jobs and turns each into a vector document."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter

from opentelemetry import trace
from prometheus_client import Counter, Histogram

from knowledge_pipeline.core.domain import ContentItem, FileReference, KnowledgeSourceInfo

from .errors import EmbeddingError, IngestionError, NormalizationError, PersistenceError
from .models import ClaimedJob, CycleReport, JobOutcome, VectorDocument
from .normalizer import ContentNormalizer
from .ports import ContentStore, EmbeddingAdapter, VectorIndex
from .queue import EmbeddingJobQueue

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

JOB_OUTCOMES = Counter(
    "knowledge_embedding_job_outcomes_total",
    "Embedding job results per queue backend.",
    ["backend", "outcome"],
)
CYCLE_LATENCY = Histogram(
    "knowledge_embedding_cycle_seconds",
    "Duration of one embedding worker cycle.",
    buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120),
)


class EmbeddingWorker:
    """Process embedding jobs with per-job isolation.

    A failing job is reported back to its queue backend and never affects
    its siblings in the batch. Vector upserts are keyed by content, so a job
    that is delivered twice still yields a single document.
    """

    def __init__(
        self,
        *,
        queue: EmbeddingJobQueue,
        content_store: ContentStore,
        normalizer: ContentNormalizer,
        embedder: EmbeddingAdapter,
        vector_index: VectorIndex,
        concurrency: int = 5,
        job_timeout: float = 120.0,
        settle_timeout: float = 30.0,
        max_content_chars: int = 8000,
    ) -> None:
        self._queue = queue
        self._content_store = content_store
        self._normalizer = normalizer
        self._embedder = embedder
        self._vector_index = vector_index
        self._concurrency = max(1, concurrency)
        self._job_timeout = job_timeout
        self._settle_timeout = settle_timeout
        self._max_content_chars = max_content_chars

    async def run_cycle(self, batch_size: int = 5) -> CycleReport:
        """Claim up to ``batch_size`` jobs and process them concurrently."""

        started = perf_counter()
        claim = await self._queue.claim_batch(batch_size)
        report = CycleReport(
            backend=claim.backend,
            claimed=len(claim.jobs),
            unavailable=claim.unavailable,
        )
        if not claim.jobs:
            logger.debug(
                "no embedding jobs claimed",
                extra={"unavailable": [name.value for name in claim.unavailable]},
            )
            CYCLE_LATENCY.observe(perf_counter() - started)
            return report

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(claimed: ClaimedJob) -> JobOutcome:
            async with semaphore:
                return await self._process(claimed)

        results = await asyncio.gather(
            *(_bounded(claimed) for claimed in claim.jobs), return_exceptions=True
        )
        for claimed, result in zip(claim.jobs, results):
            if isinstance(result, asyncio.CancelledError):
                outcome = JobOutcome.CANCELLED
            elif isinstance(result, BaseException):
                logger.error(
                    "embedding job crashed outside failure handling",
                    extra={"job_id": str(claimed.job.id)},
                    exc_info=result,
                )
                outcome = JobOutcome.RETRYING
            else:
                outcome = result
            report.outcomes[str(claimed.job.id)] = outcome
            JOB_OUTCOMES.labels(claimed.backend.value, outcome.value).inc()

        CYCLE_LATENCY.observe(perf_counter() - started)
        logger.info("embedding cycle finished", extra=report.as_dict())
        return report

    async def _process(self, claimed: ClaimedJob) -> JobOutcome:
        job = claimed.job
        try:
            kept = await asyncio.wait_for(self._embed_job(claimed), timeout=self._job_timeout)
        except asyncio.TimeoutError:
            return await self._record_failure(
                claimed, f"job timed out after {self._job_timeout}s", permanent=False
            )
        except IngestionError as exc:
            return await self._record_failure(claimed, exc.message, permanent=not exc.retryable)
        except Exception as exc:
            logger.exception(
                "unexpected error processing embedding job", extra={"job_id": str(job.id)}
            )
            return await self._record_failure(
                claimed, str(exc) or exc.__class__.__name__, permanent=False
            )

        if not kept:
            logger.info(
                "content deleted while embedding; vector removed",
                extra={"job_id": str(job.id), "content": str(job.key)},
            )
            return JobOutcome.DISCARDED

        try:
            await asyncio.wait_for(self._queue.ack(claimed), timeout=self._settle_timeout)
        except Exception:
            # The vector is stored; a redelivery only overwrites it.
            logger.exception("failed to acknowledge embedding job", extra={"job_id": str(job.id)})
            return JobOutcome.RETRYING
        return JobOutcome.SUCCEEDED

    async def _embed_job(self, claimed: ClaimedJob) -> bool:
        """Embed and index one job. Returns False when its content was deleted meanwhile."""

        job = claimed.job
        with tracer.start_as_current_span(
            "embedding.job",
            attributes={
                "job.id": str(job.id),
                "job.backend": claimed.backend.value,
                "content.type": job.content_type.value,
            },
        ):
            source, item = await self._resolve(claimed)
            text = await self._normalizer.normalize(item)
            if isinstance(item.payload, FileReference):
                await self._store_extracted_text(item, text)

            text = text[: self._max_content_chars]
            vector = await self._embed(text, source)
            document = VectorDocument(
                key=job.key,
                vector=vector,
                snippet=text,
                metadata={
                    "knowledge_source_id": str(job.knowledge_source_id),
                    "content_id": str(job.content_id),
                    "content_type": job.content_type.value,
                    "embedding_model": source.embedding_model,
                },
            )
            try:
                await self._vector_index.upsert(document)
            except IngestionError:
                raise
            except Exception as exc:
                raise PersistenceError("vector upsert failed") from exc

            if await self._queue.get_job(job.id) is None:
                await self._vector_index.delete(job.key)
                return False
            return True

    async def _resolve(self, claimed: ClaimedJob) -> tuple[KnowledgeSourceInfo, ContentItem]:
        job = claimed.job
        source = await self._content_store.get_knowledge_source(job.knowledge_source_id)
        if source is None:
            raise NormalizationError("knowledge source no longer exists", retryable=False)
        item = await self._content_store.get(job.content_type, job.content_id)
        if item is None or item.knowledge_source_id != job.knowledge_source_id:
            raise NormalizationError("content item no longer exists", retryable=False)
        return source, item

    async def _embed(self, text: str, source: KnowledgeSourceInfo) -> list[float]:
        try:
            vector = await self._embedder.embed(text, model=source.embedding_model)
        except IngestionError:
            raise
        except Exception as exc:
            raise EmbeddingError("embedding request failed") from exc

        if not vector:
            raise EmbeddingError("embedding provider returned an empty vector")
        expected = source.embedding_dimensions
        if expected and len(vector) != expected:
            raise EmbeddingError(
                f"expected {expected} dimensions, got {len(vector)}", retryable=False
            )
        return vector

    async def _store_extracted_text(self, item: ContentItem, text: str) -> None:
        payload = item.payload
        if isinstance(payload, FileReference) and payload.extracted_text == text:
            return
        try:
            await self._content_store.record_extracted_text(item.id, text)
        except Exception:
            logger.warning(
                "failed to store extracted text",
                extra={"content_id": str(item.id)},
                exc_info=True,
            )

    async def _record_failure(
        self, claimed: ClaimedJob, error: str, *, permanent: bool
    ) -> JobOutcome:
        job = claimed.job
        try:
            record = await asyncio.wait_for(
                self._queue.fail(claimed, error, permanent=permanent),
                timeout=self._settle_timeout,
            )
        except Exception:
            logger.exception(
                "failed to record embedding job failure", extra={"job_id": str(job.id)}
            )
            return JobOutcome.RETRYING

        logger.warning(
            "embedding job failed",
            extra={
                "job_id": str(job.id),
                "backend": claimed.backend.value,
                "error": error,
                "permanent": permanent,
            },
        )
        if record is None or record.is_finished:
            return JobOutcome.FAILED
        return JobOutcome.RETRYING
