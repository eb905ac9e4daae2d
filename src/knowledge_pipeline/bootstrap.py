"""Wire settings into a ready-to-use pipeline for the API, the worker and tests."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from redis.asyncio import Redis
from sqlalchemy.engine import Engine

from knowledge_pipeline.adapters import (
    AsyncEmbeddingAdapter,
    EmbeddingService,
    EmbeddingSettings,
    InMemoryVectorIndex,
    QdrantVectorIndex,
    S3ObjectStore,
    SqlContentStore,
    TikaExtractionAdapter,
)
from knowledge_pipeline.core.config import AppSettings
from knowledge_pipeline.core.db.session import create_engine_from_settings, init_db
from knowledge_pipeline.ingestion.models import CycleReport
from knowledge_pipeline.ingestion.normalizer import ContentNormalizer
from knowledge_pipeline.ingestion.orchestrator import IngestionOrchestrator
from knowledge_pipeline.ingestion.ports import (
    EmbeddingAdapter,
    ExtractionAdapter,
    ObjectStore,
    VectorIndex,
)
from knowledge_pipeline.ingestion.queue import (
    EmbeddingJobQueue,
    RedisStreamBackend,
    SqlJobRepository,
)
from knowledge_pipeline.ingestion.search import KnowledgeSearch
from knowledge_pipeline.ingestion.worker import EmbeddingWorker
from knowledge_pipeline.utils.retry import RetryConfig

logger = logging.getLogger(__name__)

Closer = Callable[[], Awaitable[None]]


@dataclass(slots=True)
class Pipeline:
    """Every long-lived collaborator of one process."""

    settings: AppSettings
    engine: Engine
    content_store: SqlContentStore
    queue: EmbeddingJobQueue
    orchestrator: IngestionOrchestrator
    worker: EmbeddingWorker
    search: KnowledgeSearch
    closers: list[Closer] = field(default_factory=list)

    async def run_cycle(self, batch_size: int | None = None) -> CycleReport:
        return await self.worker.run_cycle(batch_size or self.settings.pipeline.batch_size)

    async def aclose(self) -> None:
        await self.orchestrator.drain(timeout=self.settings.pipeline.stage_timeout_seconds)
        for close in reversed(self.closers):
            try:
                await close()
            except Exception:
                logger.warning("failed to close pipeline resource", exc_info=True)
        self.closers.clear()


def build_pipeline(
    settings: AppSettings,
    *,
    engine: Engine | None = None,
    redis: Redis | None = None,
    object_store: ObjectStore | None = None,
    extractor: ExtractionAdapter | None = None,
    embedder: EmbeddingAdapter | None = None,
    vector_index: VectorIndex | None = None,
) -> Pipeline:
    """Build the pipeline, creating any collaborator that is not passed in."""

    closers: list[Closer] = []

    if engine is None:
        engine = create_engine_from_settings(settings.postgres)
        init_db(engine)

    repository = SqlJobRepository(
        engine,
        max_attempts=settings.queue.max_attempts,
        visibility_timeout=settings.queue.visibility_timeout_seconds,
    )

    primary: RedisStreamBackend | None = None
    if redis is None and settings.queue.primary_enabled:
        redis = Redis(
            host=settings.redis.host,
            port=settings.redis.port,
            db=settings.redis.db,
            password=settings.redis.password,
            socket_timeout=settings.redis.socket_timeout_seconds,
        )
        closers.append(redis.aclose)
    if redis is not None:
        primary = RedisStreamBackend(
            redis=redis,
            repository=repository,
            stream_key=settings.queue.stream_key,
            group=settings.queue.consumer_group,
            consumer=settings.queue.consumer_name,
            visibility_timeout=settings.queue.visibility_timeout_seconds,
        )
    queue = EmbeddingJobQueue(repository=repository, primary=primary)

    if object_store is None:
        object_store = S3ObjectStore(settings.storage)

    if extractor is None:
        tika = TikaExtractionAdapter(
            url=settings.extraction.tika_url,
            timeout=settings.extraction.timeout_seconds,
        )
        closers.append(tika.close)
        extractor = tika

    if embedder is None:
        service = EmbeddingService(
            EmbeddingSettings.from_config(settings.embedding, settings.openai)
        )
        embedder = AsyncEmbeddingAdapter(service)

    if vector_index is None:
        if settings.qdrant.url:
            qdrant = QdrantVectorIndex(
                url=settings.qdrant.url,
                api_key=settings.qdrant.api_key,
                collection=settings.qdrant.collection,
                vector_size=settings.qdrant.vector_size,
                distance=settings.qdrant.distance,
                timeout=settings.qdrant.timeout_seconds,
            )
            closers.append(qdrant.close)
            vector_index = qdrant
        else:
            logger.warning("qdrant url not configured; using in-memory vector index")
            vector_index = InMemoryVectorIndex()

    content_store = SqlContentStore(engine)
    pipeline_settings = settings.pipeline

    orchestrator = IngestionOrchestrator(
        content_store=content_store,
        object_store=object_store,
        job_registry=queue,
        vector_index=vector_index,
        stage_timeout=pipeline_settings.stage_timeout_seconds,
        storage_prefix=settings.storage.prefix,
        compensation_retry=RetryConfig(attempts=pipeline_settings.compensation_attempts),
    )
    worker = EmbeddingWorker(
        queue=queue,
        content_store=content_store,
        normalizer=ContentNormalizer(object_store=object_store, extractor=extractor),
        embedder=embedder,
        vector_index=vector_index,
        concurrency=pipeline_settings.worker_concurrency,
        job_timeout=pipeline_settings.job_timeout_seconds,
        settle_timeout=pipeline_settings.stage_timeout_seconds,
        max_content_chars=pipeline_settings.max_content_chars,
    )
    search = KnowledgeSearch(
        content_store=content_store, embedder=embedder, vector_index=vector_index
    )

    return Pipeline(
        settings=settings,
        engine=engine,
        content_store=content_store,
        queue=queue,
        orchestrator=orchestrator,
        worker=worker,
        search=search,
        closers=closers,
    )
