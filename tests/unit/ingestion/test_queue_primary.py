from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from sqlalchemy import update

from knowledge_pipeline.core.db.models import EmbeddingJobStatus, EmbeddingQueueMarker
from knowledge_pipeline.core.db.session import session_scope
from knowledge_pipeline.core.domain import ContentType
from knowledge_pipeline.ingestion.errors import QueueUnavailableError
from knowledge_pipeline.ingestion.models import ContentKey, QueueBackendName
from knowledge_pipeline.ingestion.queue import (
    MarkerTableBackend,
    RedisStreamBackend,
    SqlJobRepository,
)

pytestmark = pytest.mark.unit

STREAM = "embedding_jobs"
GROUP = "embedding_workers"


class FakeRedis:
    """Single consumer group stream with a manual clock for idle times."""

    def __init__(self) -> None:
        self.entries: dict[bytes, dict[bytes, bytes]] = {}
        self.pending: dict[bytes, int] = {}
        self.groups: set[str] = set()
        self.now_ms = 0
        self.down = False
        self._sequence = 0
        self._delivered: set[bytes] = set()

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("connection refused")

    async def xgroup_create(self, name, groupname, id="$", mkstream=False):
        self._check()
        if groupname in self.groups:
            raise ResponseError("BUSYGROUP Consumer Group name already exists")
        self.groups.add(groupname)
        return True

    async def xadd(self, name, fields):
        self._check()
        self._sequence += 1
        entry_id = f"{self._sequence}-0".encode()
        self.entries[entry_id] = {
            str(key).encode(): str(value).encode() for key, value in fields.items()
        }
        return entry_id

    async def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        self._check()
        fresh = [entry_id for entry_id in self.entries if entry_id not in self._delivered]
        fresh = fresh[:count] if count else fresh
        if not fresh:
            return []
        for entry_id in fresh:
            self._delivered.add(entry_id)
            self.pending[entry_id] = self.now_ms
        return [[STREAM.encode(), [(entry_id, self.entries[entry_id]) for entry_id in fresh]]]

    async def xautoclaim(
        self, name, groupname, consumername, min_idle_time, start_id="0-0", count=None
    ):
        self._check()
        claimed = []
        for entry_id, delivered_at in list(self.pending.items()):
            if count is not None and len(claimed) >= count:
                break
            if self.now_ms - delivered_at < min_idle_time or entry_id not in self.entries:
                continue
            self.pending[entry_id] = self.now_ms
            claimed.append((entry_id, self.entries[entry_id]))
        return [b"0-0", claimed, []]

    async def xack(self, name, groupname, *ids):
        self._check()
        removed = 0
        for entry_id in ids:
            key = entry_id.encode() if isinstance(entry_id, str) else entry_id
            removed += self.pending.pop(key, None) is not None
        return removed

    async def xdel(self, name, *ids):
        self._check()
        removed = 0
        for entry_id in ids:
            key = entry_id.encode() if isinstance(entry_id, str) else entry_id
            removed += self.entries.pop(key, None) is not None
        return removed


@pytest.fixture()
def repository(engine) -> SqlJobRepository:
    return SqlJobRepository(engine, max_attempts=3, visibility_timeout=30)


@pytest.fixture()
def redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def backend(redis, repository) -> RedisStreamBackend:
    return RedisStreamBackend(
        redis=redis,
        repository=repository,
        stream_key=STREAM,
        group=GROUP,
        consumer="worker-1",
        visibility_timeout=30,
    )


async def _published_job(repository, backend, knowledge_source_id):
    key = ContentKey(knowledge_source_id, uuid4(), ContentType.TEXT)
    job, _ = await repository.create_or_reuse(key)
    await backend.publish(job.id)
    return job


def _expire_marker_claims(engine) -> None:
    stale = datetime.now(tz=UTC) - timedelta(hours=1)
    with session_scope(engine) as session:
        session.exec(update(EmbeddingQueueMarker).values(claimed_at=stale))


@pytest.mark.asyncio
async def test_claim_and_ack_removes_stream_entry(
    backend, redis, repository, knowledge_source_id
):
    job = await _published_job(repository, backend, knowledge_source_id)

    claimed = await backend.claim_batch(5)

    assert [item.job.id for item in claimed] == [job.id]
    assert claimed[0].backend is QueueBackendName.PRIMARY
    assert claimed[0].receipt == "1-0"
    assert claimed[0].job.status is EmbeddingJobStatus.PROCESSING

    await backend.ack(claimed[0])

    assert redis.entries == {}
    assert redis.pending == {}
    assert (await repository.get(job.id)).status is EmbeddingJobStatus.DONE


@pytest.mark.asyncio
async def test_existing_consumer_group_is_reused(
    backend, redis, repository, knowledge_source_id
):
    redis.groups.add(GROUP)
    job = await _published_job(repository, backend, knowledge_source_id)

    claimed = await backend.claim_batch(5)

    assert [item.job.id for item in claimed] == [job.id]


@pytest.mark.asyncio
async def test_unacknowledged_entry_is_redelivered_after_visibility_timeout(
    backend, redis, repository, knowledge_source_id, engine
):
    job = await _published_job(repository, backend, knowledge_source_id)
    assert len(await backend.claim_batch(5)) == 1

    assert await backend.claim_batch(5) == []

    redis.now_ms += 31_000
    _expire_marker_claims(engine)

    redelivered = await backend.claim_batch(5)
    assert [item.job.id for item in redelivered] == [job.id]


@pytest.mark.asyncio
async def test_entry_for_job_claimed_elsewhere_stays_pending(
    backend, redis, repository, knowledge_source_id
):
    job = await _published_job(repository, backend, knowledge_source_id)
    fallback_claims = await MarkerTableBackend(repository).claim_batch(5)
    assert [item.job.id for item in fallback_claims] == [job.id]

    assert await backend.claim_batch(5) == []
    assert b"1-0" in redis.pending
    assert b"1-0" in redis.entries


@pytest.mark.asyncio
async def test_entries_for_missing_or_finished_jobs_are_dropped(
    backend, redis, repository, knowledge_source_id
):
    await backend.publish(uuid4())
    job = await _published_job(repository, backend, knowledge_source_id)
    await repository.mark_done(job.id)

    assert await backend.claim_batch(5) == []
    assert redis.entries == {}
    assert redis.pending == {}


@pytest.mark.asyncio
async def test_malformed_entry_is_dropped(backend, redis):
    await redis.xadd(STREAM, {"something": "else"})

    assert await backend.claim_batch(5) == []
    assert redis.entries == {}


@pytest.mark.asyncio
async def test_retryable_failure_keeps_entry_for_redelivery(
    backend, redis, repository, knowledge_source_id
):
    await _published_job(repository, backend, knowledge_source_id)
    claimed = (await backend.claim_batch(5))[0]

    record = await backend.fail(claimed, "embedding timeout")

    assert record.status is EmbeddingJobStatus.PENDING
    assert b"1-0" in redis.entries


@pytest.mark.asyncio
async def test_permanent_failure_drops_entry(backend, redis, repository, knowledge_source_id):
    await _published_job(repository, backend, knowledge_source_id)
    claimed = (await backend.claim_batch(5))[0]

    record = await backend.fail(claimed, "unsupported file", permanent=True)

    assert record.status is EmbeddingJobStatus.FAILED
    assert redis.entries == {}


@pytest.mark.asyncio
async def test_unreachable_redis_raises_queue_unavailable(backend, redis):
    redis.down = True

    with pytest.raises(QueueUnavailableError):
        await backend.claim_batch(5)
    with pytest.raises(QueueUnavailableError):
        await backend.publish(uuid4())
