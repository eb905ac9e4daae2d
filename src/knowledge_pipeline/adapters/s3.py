"""Object store adapter for S3-compatible storage (MinIO in development)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from knowledge_pipeline.core.config import StorageSettings
from knowledge_pipeline.ingestion.errors import StorageError

logger = logging.getLogger(__name__)

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


class S3ObjectStore:
    """Put, read and delete knowledge files in one bucket."""

    def __init__(
        self,
        settings: StorageSettings,
        *,
        session: aioboto3.Session | None = None,
    ) -> None:
        self._settings = settings
        self._session = session or aioboto3.Session()
        self._bucket_ready = False
        self._lock = asyncio.Lock()

    @property
    def bucket(self) -> str:
        return self._settings.bucket

    async def put(self, path: str, data: bytes, mime_type: str) -> None:
        try:
            async with self._client() as client:
                await self._ensure_bucket(client)
                await client.put_object(
                    Bucket=self._settings.bucket,
                    Key=path,
                    Body=data,
                    ContentType=mime_type,
                )
        except (BotoCoreError, ClientError) as exc:
            logger.error(
                "failed to upload knowledge file",
                extra={"bucket": self._settings.bucket, "key": path},
            )
            raise StorageError("failed to upload object", retryable=True) from exc

    async def get(self, path: str) -> bytes:
        try:
            async with self._client() as client:
                response = await client.get_object(Bucket=self._settings.bucket, Key=path)
                return await response["Body"].read()
        except ClientError as exc:
            code = _error_code(exc)
            if code in {"NoSuchKey", "404"}:
                raise StorageError(f"object {path} does not exist", retryable=False) from exc
            raise StorageError("failed to read object", retryable=True) from exc
        except BotoCoreError as exc:
            raise StorageError("failed to read object", retryable=True) from exc

    async def delete(self, path: str) -> None:
        """Delete an object. Deleting a missing key succeeds."""

        try:
            async with self._client() as client:
                await client.delete_object(Bucket=self._settings.bucket, Key=path)
        except (BotoCoreError, ClientError) as exc:
            logger.error(
                "failed to delete knowledge file",
                extra={"bucket": self._settings.bucket, "key": path},
            )
            raise StorageError("failed to delete object", retryable=True) from exc

    def _client(self) -> Any:
        return self._session.client(
            "s3",
            endpoint_url=self._settings.endpoint_url,
            aws_access_key_id=self._settings.access_key,
            aws_secret_access_key=self._settings.secret_key,
            region_name=self._settings.region,
        )

    async def _ensure_bucket(self, client: Any) -> None:
        async with self._lock:
            if self._bucket_ready:
                return
            try:
                await client.head_bucket(Bucket=self._settings.bucket)
            except ClientError as exc:
                if _error_code(exc) not in _MISSING_BUCKET_CODES:
                    raise
                logger.info("creating storage bucket", extra={"bucket": self._settings.bucket})
                await client.create_bucket(Bucket=self._settings.bucket)
            self._bucket_ready = True


def _error_code(exc: ClientError) -> str | None:
    return getattr(exc, "response", {}).get("Error", {}).get("Code")
