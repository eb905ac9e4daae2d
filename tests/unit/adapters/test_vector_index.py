from __future__ import annotations

import json
from uuid import uuid4

import httpx
import pytest

from knowledge_pipeline.adapters.vector_index import InMemoryVectorIndex, QdrantVectorIndex
from knowledge_pipeline.core.domain import ContentType
from knowledge_pipeline.ingestion.errors import PersistenceError
from knowledge_pipeline.ingestion.models import ContentKey, VectorDocument

pytestmark = pytest.mark.unit


class QdrantStub:
    def __init__(self, *, collection_exists: bool = False, fail_upsert: int | None = None) -> None:
        self.collection_exists = collection_exists
        self.fail_upsert = fail_upsert
        self.requests: list[tuple[str, str, dict | None]] = []
        self.points: dict[str, dict] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        path = request.url.path
        if path == "/collections/knowledge" and request.method == "GET":
            return httpx.Response(200 if self.collection_exists else 404, json={})
        if path == "/collections/knowledge" and request.method == "PUT":
            self.collection_exists = True
            return httpx.Response(200, json={"result": True})
        if path == "/collections/knowledge/points" and request.method == "PUT":
            if self.fail_upsert:
                return httpx.Response(self.fail_upsert, json={"status": "error"})
            for point in body["points"]:
                self.points[point["id"]] = point
            return httpx.Response(200, json={"result": {"status": "completed"}})
        if path == "/collections/knowledge/points/delete":
            for point_id in body["points"]:
                self.points.pop(point_id, None)
            return httpx.Response(200, json={"result": {"status": "completed"}})
        if path == "/collections/knowledge/points/search":
            result = [
                {"id": point_id, "score": 0.9, "payload": point["payload"]}
                for point_id, point in self.points.items()
            ]
            result.append({"id": "broken", "score": 0.1, "payload": {"text": "no key"}})
            return httpx.Response(200, json={"result": result})
        return httpx.Response(404, json={})


def _index(stub: QdrantStub) -> QdrantVectorIndex:
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return QdrantVectorIndex(
        url="http://qdrant:6333",
        api_key="secret",
        collection="knowledge",
        vector_size=3,
        client=client,
    )


def _document(key: ContentKey, snippet: str, vector=(1.0, 0.0, 0.0)) -> VectorDocument:
    return VectorDocument(key=key, vector=list(vector), snippet=snippet, metadata={"k": "v"})


@pytest.mark.asyncio
async def test_qdrant_creates_collection_and_upserts_by_content_key():
    stub = QdrantStub()
    index = _index(stub)
    key = ContentKey(uuid4(), uuid4(), ContentType.TEXT)

    await index.upsert(_document(key, "first"))
    await index.upsert(_document(key, "second"))

    create = ("PUT", "/collections/knowledge", {"vectors": {"size": 3, "distance": "Cosine"}})
    assert create in stub.requests
    assert list(stub.points) == [key.point_id]
    assert stub.points[key.point_id]["payload"]["text"] == "second"
    assert sum(1 for method, path, _ in stub.requests if method == "GET") == 1
    await index.close()


@pytest.mark.asyncio
async def test_qdrant_search_filters_by_source_and_skips_malformed_points():
    stub = QdrantStub(collection_exists=True)
    index = _index(stub)
    source_id = uuid4()
    key = ContentKey(source_id, uuid4(), ContentType.QA)
    await index.upsert(_document(key, "Question: a\n\nAnswer: b"))

    hits = await index.search(source_id, [1.0, 0.0, 0.0], limit=3, content_types=[ContentType.QA])

    assert [hit.key for hit in hits] == [key]
    assert hits[0].snippet == "Question: a\n\nAnswer: b"
    _, _, body = stub.requests[-1]
    assert body["limit"] == 3
    assert body["filter"]["must"] == [
        {"key": "knowledge_source_id", "match": {"value": str(source_id)}},
        {"key": "content_type", "match": {"any": ["qa"]}},
    ]


@pytest.mark.asyncio
async def test_qdrant_delete_removes_point():
    stub = QdrantStub(collection_exists=True)
    index = _index(stub)
    key = ContentKey(uuid4(), uuid4(), ContentType.WEBSITE)
    await index.upsert(_document(key, "Website: https://example.com"))

    await index.delete(key)

    assert stub.points == {}


@pytest.mark.asyncio
async def test_qdrant_errors_map_to_persistence_errors():
    index = _index(QdrantStub(collection_exists=True, fail_upsert=400))
    key = ContentKey(uuid4(), uuid4(), ContentType.TEXT)

    with pytest.raises(PersistenceError) as exc_info:
        await index.upsert(_document(key, "x"))
    assert exc_info.value.retryable is False

    index = _index(QdrantStub(collection_exists=True, fail_upsert=502))
    with pytest.raises(PersistenceError) as exc_info:
        await index.upsert(_document(key, "x"))
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_in_memory_index_ranks_and_scopes_results():
    index = InMemoryVectorIndex()
    source_id = uuid4()
    close = ContentKey(source_id, uuid4(), ContentType.TEXT)
    far = ContentKey(source_id, uuid4(), ContentType.QA)
    foreign = ContentKey(uuid4(), uuid4(), ContentType.TEXT)
    await index.upsert(_document(close, "close", (1.0, 0.1, 0.0)))
    await index.upsert(_document(far, "far", (0.0, 1.0, 0.0)))
    await index.upsert(_document(foreign, "foreign", (1.0, 0.0, 0.0)))

    hits = await index.search(source_id, [1.0, 0.0, 0.0])
    assert [hit.key for hit in hits] == [close, far]
    assert hits[0].score > hits[1].score

    only_qa = await index.search(source_id, [1.0, 0.0, 0.0], content_types=[ContentType.QA])
    assert [hit.key for hit in only_qa] == [far]

    await index.delete(close)
    assert index.get(close) is None
    assert len(index) == 2
