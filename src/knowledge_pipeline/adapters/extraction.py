"""Text extraction through an Apache Tika server."""

from __future__ import annotations

import logging

import httpx

from knowledge_pipeline.ingestion.errors import ExtractionError

logger = logging.getLogger(__name__)

_PLAIN_TEXT_TYPES = {"application/json", "application/xml", "application/x-yaml"}


class TikaExtractionAdapter:
    """Send file bytes to ``PUT /tika`` and return the plain text.

    Plain-text uploads are decoded locally without a round trip. Client errors
    from Tika (unsupported or corrupt documents) are permanent, everything
    else can be retried.
    """

    def __init__(
        self,
        *,
        url: str,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def extract(self, data: bytes, mime_type: str) -> str:
        media_type = (mime_type or "application/octet-stream").split(";")[0].strip().lower()
        if media_type.startswith("text/") or media_type in _PLAIN_TEXT_TYPES:
            return data.decode("utf-8", errors="replace")

        try:
            response = await self._client.put(
                f"{self._url}/tika",
                content=data,
                headers={"Content-Type": media_type, "Accept": "text/plain"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error(
                "tika responded with error",
                extra={"status": status, "mime_type": media_type},
            )
            raise ExtractionError(
                f"tika extraction failed with status {status}",
                retryable=status >= 500 or status == 429,
            ) from exc
        except httpx.HTTPError as exc:
            raise ExtractionError("failed to reach tika", retryable=True) from exc

        return response.text
