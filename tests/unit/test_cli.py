from __future__ import annotations

import json
from pathlib import Path
from uuid import uuid4

import httpx
import pytest

from knowledge_pipeline import cli

pytestmark = pytest.mark.unit


class Recorder:
    def __init__(self, status_code: int = 200, payload: dict | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self._status_code = status_code
        self._payload = payload if payload is not None else {"data": {"ok": True}}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self._status_code, json=self._payload)


def _send(argv: list[str], recorder: Recorder) -> httpx.Response:
    args = cli.build_parser().parse_args(argv)
    with httpx.Client(
        base_url="http://pipeline.test", transport=httpx.MockTransport(recorder)
    ) as client:
        return cli.send(client, args)


def test_add_qa_posts_inline_content() -> None:
    recorder = Recorder()
    source_id = uuid4()

    _send(["add-qa", str(source_id), "--question", "What is X?", "--answer", "Y"], recorder)

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == f"/v1/knowledge-sources/{source_id}/content"
    assert json.loads(request.content) == {"kind": "qa", "question": "What is X?", "answer": "Y"}


def test_upload_sends_multipart_file(tmp_path: Path) -> None:
    recorder = Recorder()
    source_id = uuid4()
    document = tmp_path / "handbook.md"
    document.write_text("# Handbook", encoding="utf-8")

    _send(["upload", str(source_id), str(document), "--mime-type", "text/markdown"], recorder)

    request = recorder.requests[0]
    assert request.url.path == f"/v1/knowledge-sources/{source_id}/files"
    assert request.headers["content-type"].startswith("multipart/form-data")
    assert b"# Handbook" in request.content
    assert b'filename="handbook.md"' in request.content


def test_delete_and_run_cycle_paths() -> None:
    recorder = Recorder()
    source_id, content_id = uuid4(), uuid4()

    _send(["delete", str(source_id), "file", str(content_id)], recorder)
    _send(["run-cycle", "--batch-size", "3"], recorder)

    delete, cycle = recorder.requests
    assert delete.method == "DELETE"
    assert delete.url.path == f"/v1/knowledge-sources/{source_id}/content/file/{content_id}"
    assert cycle.url.path == "/v1/embeddings/cycles"
    assert json.loads(cycle.content) == {"batch_size": 3}


def test_invalid_uuid_is_rejected_by_parser() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["job", "not-a-uuid"])


def test_main_reports_http_errors(monkeypatch, capsys) -> None:
    recorder = Recorder(status_code=404, payload={"code": "not_found"})
    original = httpx.Client

    def client_factory(**kwargs):
        return original(transport=httpx.MockTransport(recorder), **kwargs)

    monkeypatch.setattr(cli.httpx, "Client", client_factory)

    exit_code = cli.main(["job", str(uuid4())])

    assert exit_code == 1
    assert "request failed (404)" in capsys.readouterr().out


def test_main_prints_json_on_success(monkeypatch, capsys) -> None:
    recorder = Recorder(payload={"data": {"claimed": 0}})
    original = httpx.Client

    def client_factory(**kwargs):
        return original(transport=httpx.MockTransport(recorder), **kwargs)

    monkeypatch.setattr(cli.httpx, "Client", client_factory)

    exit_code = cli.main(["run-cycle"])

    assert exit_code == 0
    assert json.loads(capsys.readouterr().out) == {"data": {"claimed": 0}}
