"""Vector index adapters: Qdrant over REST and an in-process index."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from typing import Any
from uuid import UUID

import httpx

from knowledge_pipeline.core.domain import ContentType
from knowledge_pipeline.ingestion.errors import PersistenceError
from knowledge_pipeline.ingestion.models import ContentKey, SearchHit, VectorDocument

logger = logging.getLogger(__name__)


class QdrantVectorIndex:
    """Store one point per content item; the point id is derived from the content key."""

    def __init__(
        self,
        *,
        url: str,
        api_key: str | None = None,
        collection: str = "knowledge_vectors",
        vector_size: int = 1536,
        distance: str = "Cosine",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._collection = collection
        self._vector_size = vector_size
        self._distance = distance
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._collection_ready = False
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        await self._client.aclose()

    async def upsert(self, document: VectorDocument) -> None:
        await self._ensure_collection()
        key = document.key
        point = {
            "id": key.point_id,
            "vector": list(document.vector),
            "payload": {
                "knowledge_source_id": str(key.knowledge_source_id),
                "content_id": str(key.content_id),
                "content_type": key.content_type.value,
                "text": document.snippet,
                "metadata": document.metadata,
            },
        }
        await self._request(
            "PUT",
            f"/collections/{self._collection}/points?wait=true",
            {"points": [point]},
            action="upsert",
        )

    async def delete(self, key: ContentKey) -> None:
        await self._ensure_collection()
        await self._request(
            "POST",
            f"/collections/{self._collection}/points/delete?wait=true",
            {"points": [key.point_id]},
            action="delete",
        )

    async def search(
        self,
        knowledge_source_id: UUID,
        vector: Sequence[float],
        *,
        limit: int = 10,
        content_types: Sequence[ContentType] | None = None,
    ) -> list[SearchHit]:
        await self._ensure_collection()
        must: list[dict[str, Any]] = [
            {"key": "knowledge_source_id", "match": {"value": str(knowledge_source_id)}}
        ]
        if content_types:
            must.append(
                {"key": "content_type", "match": {"any": [ct.value for ct in content_types]}}
            )
        response = await self._request(
            "POST",
            f"/collections/{self._collection}/points/search",
            {
                "vector": list(vector),
                "limit": limit,
                "with_payload": True,
                "filter": {"must": must},
            },
            action="search",
        )
        hits: list[SearchHit] = []
        for item in response.json().get("result", []):
            payload = item.get("payload") or {}
            try:
                key = ContentKey(
                    knowledge_source_id=UUID(payload["knowledge_source_id"]),
                    content_id=UUID(payload["content_id"]),
                    content_type=ContentType(payload["content_type"]),
                )
            except (KeyError, ValueError):
                logger.warning(
                    "skipping qdrant point with malformed payload", extra={"id": item.get("id")}
                )
                continue
            hits.append(
                SearchHit(
                    key=key,
                    score=float(item.get("score", 0.0)),
                    snippet=payload.get("text", ""),
                    metadata=payload.get("metadata") or {},
                )
            )
        return hits

    async def _request(
        self, method: str, path: str, payload: dict[str, Any], *, action: str
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, f"{self._url}{path}", json=payload, headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "qdrant responded with error",
                extra={
                    "action": action,
                    "status": exc.response.status_code,
                    "body": exc.response.text,
                },
            )
            raise PersistenceError(
                f"qdrant rejected {action} request",
                retryable=exc.response.status_code >= 500,
            ) from exc
        except httpx.HTTPError as exc:
            raise PersistenceError("failed to reach qdrant", retryable=True) from exc
        return response

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["api-key"] = self._api_key
        return headers

    async def _ensure_collection(self) -> None:
        async with self._lock:
            if self._collection_ready:
                return
            try:
                response = await self._client.get(
                    f"{self._url}/collections/{self._collection}", headers=self._headers()
                )
                if response.status_code == 404:
                    response = await self._client.put(
                        f"{self._url}/collections/{self._collection}",
                        json={"vectors": {"size": self._vector_size, "distance": self._distance}},
                        headers=self._headers(),
                    )
            except httpx.HTTPError as exc:
                logger.error("qdrant ensure collection failed", exc_info=exc)
                raise PersistenceError(
                    "unable to ensure qdrant collection", retryable=True
                ) from exc

            if response.status_code not in (200, 201):
                logger.warning(
                    "qdrant collection ensure returned non-success",
                    extra={"status": response.status_code, "body": response.text},
                )
            self._collection_ready = True


class InMemoryVectorIndex:
    """Process-local index with cosine similarity, for tests and single-node development."""

    def __init__(self) -> None:
        self._documents: dict[str, VectorDocument] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._documents)

    def get(self, key: ContentKey) -> VectorDocument | None:
        return self._documents.get(key.point_id)

    @property
    def documents(self) -> list[VectorDocument]:
        return list(self._documents.values())

    async def upsert(self, document: VectorDocument) -> None:
        async with self._lock:
            self._documents[document.key.point_id] = document

    async def delete(self, key: ContentKey) -> None:
        async with self._lock:
            self._documents.pop(key.point_id, None)

    async def search(
        self,
        knowledge_source_id: UUID,
        vector: Sequence[float],
        *,
        limit: int = 10,
        content_types: Sequence[ContentType] | None = None,
    ) -> list[SearchHit]:
        allowed = set(content_types) if content_types else None
        hits = [
            SearchHit(
                key=document.key,
                score=_cosine(vector, document.vector),
                snippet=document.snippet,
                metadata=dict(document.metadata),
            )
            for document in self._documents.values()
            if document.key.knowledge_source_id == knowledge_source_id
            and (allowed is None or document.key.content_type in allowed)
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]


def _cosine(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right):
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    return dot / norm if norm else 0.0
