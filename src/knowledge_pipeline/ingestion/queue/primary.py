"""Primary embedding queue backed by a Redis Stream consumer group.

Delivery is at-least-once. A read entry stays in the group's pending list
until it is acknowledged; entries idle longer than the visibility timeout are
reclaimed with ``XAUTOCLAIM`` on the next cycle.
"""

from __future__ import annotations

import logging
import os
import socket
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError
from sqlalchemy.exc import SQLAlchemyError

from ..errors import QueueUnavailableError
from ..models import ClaimedJob, EmbeddingJobRecord, QueueBackendName
from .repository import SqlJobRepository

logger = logging.getLogger(__name__)


def default_consumer_name() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class RedisStreamBackend:
    """Claim jobs from a Redis Stream, using the marker row as the claim token."""

    name = QueueBackendName.PRIMARY

    def __init__(
        self,
        *,
        redis: Redis,
        repository: SqlJobRepository,
        stream_key: str = "embedding_jobs",
        group: str = "embedding_workers",
        consumer: str | None = None,
        visibility_timeout: float = 30.0,
    ) -> None:
        self._redis = redis
        self._repository = repository
        self._stream_key = stream_key
        self._group = group
        self._consumer = consumer or default_consumer_name()
        self._min_idle_ms = int(visibility_timeout * 1000)
        self._group_ready = False

    async def publish(self, job_id: UUID) -> str:
        """Append a job id to the stream and return the entry id."""

        try:
            entry_id = await self._redis.xadd(self._stream_key, {"job_id": str(job_id)})
        except (RedisError, OSError) as exc:
            raise QueueUnavailableError("embedding stream is unavailable") from exc
        return _decode(entry_id)

    async def claim_batch(self, limit: int) -> list[ClaimedJob]:
        try:
            await self._ensure_group()
            entries = await self._reclaim_idle(limit)
            remaining = limit - len(entries)
            if remaining > 0:
                response = await self._redis.xreadgroup(
                    self._group,
                    self._consumer,
                    {self._stream_key: ">"},
                    count=remaining,
                )
                for _stream, messages in response or []:
                    entries.extend(messages)
        except (RedisError, OSError) as exc:
            raise QueueUnavailableError("embedding stream is unavailable") from exc

        claimed: list[ClaimedJob] = []
        for raw_id, fields in entries:
            if raw_id is None:
                continue
            entry_id = _decode(raw_id)
            job_id = _job_id(fields)
            if job_id is None:
                logger.warning("dropping malformed stream entry", extra={"entry_id": entry_id})
                await self._drop(entry_id)
                continue

            try:
                attempt = await self._repository.claim(job_id)
            except SQLAlchemyError as exc:
                raise QueueUnavailableError("embedding job table is unavailable") from exc

            if attempt.record is None or attempt.record.is_finished:
                await self._drop(entry_id)
                continue
            if not attempt.claimed:
                # Another worker holds the marker; the entry is redelivered later.
                continue
            claimed.append(ClaimedJob(job=attempt.record, backend=self.name, receipt=entry_id))
        return claimed

    async def ack(self, claimed: ClaimedJob) -> None:
        await self._repository.mark_done(claimed.job.id)
        if claimed.receipt is not None:
            await self._drop(claimed.receipt)

    async def fail(
        self, claimed: ClaimedJob, error: str, *, permanent: bool = False
    ) -> EmbeddingJobRecord | None:
        record = await self._repository.record_failure(claimed.job.id, error, permanent=permanent)
        if claimed.receipt is not None and (record is None or record.is_finished):
            await self._drop(claimed.receipt)
        return record

    async def _ensure_group(self) -> None:
        if self._group_ready:
            return
        try:
            await self._redis.xgroup_create(self._stream_key, self._group, id="0", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise
        self._group_ready = True

    async def _reclaim_idle(self, limit: int) -> list[tuple[Any, Any]]:
        result = await self._redis.xautoclaim(
            self._stream_key,
            self._group,
            self._consumer,
            min_idle_time=self._min_idle_ms,
            start_id="0-0",
            count=limit,
        )
        if not result or len(result) < 2:
            return []
        return list(result[1] or [])

    async def _drop(self, entry_id: str) -> None:
        try:
            await self._redis.xack(self._stream_key, self._group, entry_id)
            await self._redis.xdel(self._stream_key, entry_id)
        except (RedisError, OSError):
            logger.warning(
                "failed to acknowledge stream entry",
                extra={"entry_id": entry_id},
                exc_info=True,
            )


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _job_id(fields: Mapping[Any, Any] | None) -> UUID | None:
    if not fields:
        return None
    raw = fields.get(b"job_id", fields.get("job_id"))
    if raw is None:
        return None
    try:
        return UUID(_decode(raw))
    except ValueError:
        return None
