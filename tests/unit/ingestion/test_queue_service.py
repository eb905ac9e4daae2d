from __future__ import annotations

from uuid import UUID, uuid4

import pytest

from knowledge_pipeline.core.db.models import EmbeddingJobStatus
from knowledge_pipeline.core.domain import ContentType
from knowledge_pipeline.ingestion.errors import QueueUnavailableError
from knowledge_pipeline.ingestion.models import ClaimedJob, ContentKey, QueueBackendName
from knowledge_pipeline.ingestion.queue import EmbeddingJobQueue, SqlJobRepository

pytestmark = pytest.mark.unit


class StubPrimary:
    """Stream backend double; only records publishes unless told to fail."""

    name = QueueBackendName.PRIMARY

    def __init__(self, *, down: bool = False) -> None:
        self.down = down
        self.published: list[UUID] = []
        self.acked: list[ClaimedJob] = []

    async def publish(self, job_id: UUID) -> str:
        if self.down:
            raise QueueUnavailableError("embedding stream is unavailable")
        self.published.append(job_id)
        return f"{len(self.published)}-0"

    async def claim_batch(self, limit: int) -> list[ClaimedJob]:
        if self.down:
            raise QueueUnavailableError("embedding stream is unavailable")
        return []

    async def ack(self, claimed: ClaimedJob) -> None:
        self.acked.append(claimed)

    async def fail(self, claimed, error, *, permanent=False):
        return None


class UnavailableBackend:
    def __init__(self, name: QueueBackendName) -> None:
        self.name = name
        self.calls = 0

    async def claim_batch(self, limit: int) -> list[ClaimedJob]:
        self.calls += 1
        raise QueueUnavailableError(f"{self.name.value} is unavailable")

    async def ack(self, claimed: ClaimedJob) -> None:
        raise AssertionError("unavailable backend must not be acknowledged")

    async def fail(self, claimed, error, *, permanent=False):
        raise AssertionError("unavailable backend must not record failures")


@pytest.fixture()
def repository(engine) -> SqlJobRepository:
    return SqlJobRepository(engine, max_attempts=3, visibility_timeout=30)


@pytest.mark.asyncio
async def test_enqueue_publishes_new_jobs_only(repository, knowledge_source_id):
    primary = StubPrimary()
    queue = EmbeddingJobQueue(repository=repository, primary=primary)
    content_id = uuid4()

    first = await queue.enqueue(knowledge_source_id, content_id, ContentType.TEXT)
    second = await queue.enqueue(knowledge_source_id, content_id, ContentType.TEXT)

    assert first == second
    assert primary.published == [first]


@pytest.mark.asyncio
async def test_enqueue_survives_stream_outage(repository, knowledge_source_id):
    queue = EmbeddingJobQueue(repository=repository, primary=StubPrimary(down=True))

    job_id = await queue.enqueue(knowledge_source_id, uuid4(), ContentType.QA)

    record = await queue.get_job(job_id)
    assert record.status is EmbeddingJobStatus.PENDING


@pytest.mark.asyncio
async def test_claim_degrades_to_marker_table_when_stream_is_down(
    repository, knowledge_source_id
):
    queue = EmbeddingJobQueue(repository=repository, primary=StubPrimary(down=True))
    job_id = await queue.enqueue(knowledge_source_id, uuid4(), ContentType.TEXT)

    result = await queue.claim_batch(5)

    assert result.backend is QueueBackendName.FALLBACK
    assert result.unavailable == (QueueBackendName.PRIMARY,)
    assert [claimed.job.id for claimed in result.jobs] == [job_id]


@pytest.mark.asyncio
async def test_claim_uses_marker_table_when_stream_is_empty(repository, knowledge_source_id):
    queue = EmbeddingJobQueue(repository=repository, primary=StubPrimary())
    job_id = await queue.enqueue(knowledge_source_id, uuid4(), ContentType.TEXT)

    result = await queue.claim_batch(5)

    assert result.backend is QueueBackendName.FALLBACK
    assert result.unavailable == ()
    assert [claimed.job.id for claimed in result.jobs] == [job_id]


@pytest.mark.asyncio
async def test_claim_degrades_to_direct_scan(repository, knowledge_source_id):
    fallback = UnavailableBackend(QueueBackendName.FALLBACK)
    queue = EmbeddingJobQueue(
        repository=repository, primary=StubPrimary(down=True), fallback=fallback
    )
    job_id = await queue.enqueue(knowledge_source_id, uuid4(), ContentType.WEBSITE)

    result = await queue.claim_batch(5)

    assert result.backend is QueueBackendName.DIRECT
    assert result.unavailable == (QueueBackendName.PRIMARY, QueueBackendName.FALLBACK)
    assert [claimed.job.id for claimed in result.jobs] == [job_id]
    assert result.jobs[0].job.status is EmbeddingJobStatus.PENDING


@pytest.mark.asyncio
async def test_degradation_is_reevaluated_every_cycle(repository, knowledge_source_id):
    primary = StubPrimary(down=True)
    queue = EmbeddingJobQueue(repository=repository, primary=primary)

    first = await queue.claim_batch(5)
    primary.down = False
    second = await queue.claim_batch(5)

    assert first.unavailable == (QueueBackendName.PRIMARY,)
    assert second.unavailable == ()


@pytest.mark.asyncio
async def test_empty_queue_reports_no_backend(repository):
    queue = EmbeddingJobQueue(repository=repository)

    result = await queue.claim_batch(5)

    assert result.backend is None
    assert list(result.jobs) == []
    assert queue.backends == [QueueBackendName.FALLBACK, QueueBackendName.DIRECT]


@pytest.mark.asyncio
async def test_ack_and_fail_are_routed_to_the_claiming_backend(repository, knowledge_source_id):
    queue = EmbeddingJobQueue(repository=repository)
    ok_id = await queue.enqueue(knowledge_source_id, uuid4(), ContentType.TEXT)
    bad_id = await queue.enqueue(knowledge_source_id, uuid4(), ContentType.TEXT)
    claimed = {item.job.id: item for item in (await queue.claim_batch(5)).jobs}

    await queue.ack(claimed[ok_id])
    record = await queue.fail(claimed[bad_id], "boom", permanent=True)

    assert (await queue.get_job(ok_id)).status is EmbeddingJobStatus.DONE
    assert record.status is EmbeddingJobStatus.FAILED


@pytest.mark.asyncio
async def test_discard_removes_jobs_for_content(repository, knowledge_source_id):
    queue = EmbeddingJobQueue(repository=repository)
    content_id = uuid4()
    job_id = await queue.enqueue(knowledge_source_id, content_id, ContentType.TEXT)

    removed = await queue.discard(ContentKey(knowledge_source_id, content_id, ContentType.TEXT))

    assert removed == 1
    assert await queue.get_job(job_id) is None
