"""Command line client for a running knowledge pipeline API."""

from __future__ import annotations

import argparse
import json
import mimetypes
from pathlib import Path
from typing import Any
from uuid import UUID

import httpx


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ingest knowledge content and drive embedding cycles.",
    )
    parser.add_argument(
        "--host",
        default="http://localhost:8000",
        help="Base URL for the knowledge pipeline service (default: %(default)s)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="HTTP timeout in seconds (default: %(default)s).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    source = commands.add_parser("create-source", help="Create a knowledge source.")
    source.add_argument("--owner-id", required=True)
    source.add_argument("--name", required=True)
    source.add_argument("--embedding-model", default="text-embedding-3-small")
    source.add_argument("--embedding-dimensions", type=int, default=None)

    text = commands.add_parser("add-text", help="Ingest a block of text.")
    text.add_argument("knowledge_source_id", type=_parse_uuid)
    text.add_argument("body")

    qa = commands.add_parser("add-qa", help="Ingest a question and answer pair.")
    qa.add_argument("knowledge_source_id", type=_parse_uuid)
    qa.add_argument("--question", required=True)
    qa.add_argument("--answer", default="")

    website = commands.add_parser("add-website", help="Ingest a website reference.")
    website.add_argument("knowledge_source_id", type=_parse_uuid)
    website.add_argument("url")
    website.add_argument("--title", default=None)

    upload = commands.add_parser("upload", help="Upload a file for extraction.")
    upload.add_argument("knowledge_source_id", type=_parse_uuid)
    upload.add_argument("path", type=Path)
    upload.add_argument("--mime-type", default=None)

    delete = commands.add_parser("delete", help="Delete a content item.")
    delete.add_argument("knowledge_source_id", type=_parse_uuid)
    delete.add_argument("content_type", choices=["text", "qa", "website", "file"])
    delete.add_argument("content_id", type=_parse_uuid)

    cycle = commands.add_parser("run-cycle", help="Run one embedding cycle.")
    cycle.add_argument("--batch-size", type=int, default=None)

    job = commands.add_parser("job", help="Show an embedding job.")
    job.add_argument("job_id", type=_parse_uuid)

    search = commands.add_parser("search", help="Search a knowledge source.")
    search.add_argument("knowledge_source_id", type=_parse_uuid)
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=5)

    return parser


def send(client: httpx.Client, args: argparse.Namespace) -> httpx.Response:
    """Issue the request that corresponds to the parsed command."""

    command = args.command
    if command == "create-source":
        return client.post(
            "/v1/knowledge-sources",
            json={
                "owner_id": args.owner_id,
                "name": args.name,
                "embedding_model": args.embedding_model,
                "embedding_dimensions": args.embedding_dimensions,
            },
        )
    if command in {"add-text", "add-qa", "add-website"}:
        return client.post(
            f"/v1/knowledge-sources/{args.knowledge_source_id}/content",
            json=_inline_payload(args),
        )
    if command == "upload":
        mime_type = (
            args.mime_type
            or mimetypes.guess_type(args.path.name)[0]
            or "application/octet-stream"
        )
        files = {"file": (args.path.name, args.path.read_bytes(), mime_type)}
        return client.post(f"/v1/knowledge-sources/{args.knowledge_source_id}/files", files=files)
    if command == "delete":
        return client.delete(
            f"/v1/knowledge-sources/{args.knowledge_source_id}"
            f"/content/{args.content_type}/{args.content_id}"
        )
    if command == "run-cycle":
        return client.post("/v1/embeddings/cycles", json={"batch_size": args.batch_size})
    if command == "job":
        return client.get(f"/v1/embeddings/jobs/{args.job_id}")
    if command == "search":
        return client.post(
            f"/v1/knowledge-sources/{args.knowledge_source_id}/search",
            json={"query": args.query, "limit": args.limit},
        )
    msg = f"unknown command: {command}"
    raise ValueError(msg)


def _inline_payload(args: argparse.Namespace) -> dict[str, Any]:
    if args.command == "add-text":
        return {"kind": "text", "body": args.body}
    if args.command == "add-qa":
        return {"kind": "qa", "question": args.question, "answer": args.answer}
    return {"kind": "website", "url": args.url, "title": args.title}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    with httpx.Client(base_url=args.host, timeout=args.timeout) as client:
        try:
            response = send(client, args)
        except httpx.HTTPError as exc:
            print(f"! request failed: {exc}")
            return 2

    if response.status_code >= 400:
        print(f"! request failed ({response.status_code}): {response.text}")
        return 1
    if response.content:
        print(json.dumps(response.json(), indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
