"""Configuration loaders for the knowledge pipeline.

Leverages pydantic-settings to hydrate runtime configuration from environment
variables, an optional ``.env`` file, or default values. Each settings class
maps to one backing system the pipeline talks to.
"""

from __future__ import annotations

from enum import Enum
from functools import cached_property
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _settings_config(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class BaseAppSettings(BaseSettings):
    """Base settings that looks at environment variables and an optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class PostgresSettings(BaseAppSettings):
    """Postgres connection details for the content store and job tables."""

    model_config = _settings_config("postgres_")

    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = "knowledge"
    user: str = "knowledge"
    password: str = "changeme"
    sslmode: str = "prefer"
    url: str | None = None

    @cached_property
    def dsn(self) -> str:
        """Return the SQLAlchemy URL, preferring an explicit ``POSTGRES_URL``."""

        if self.url:
            return self.url
        return (
            f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"
            f"?sslmode={self.sslmode}"
        )


class RedisSettings(BaseAppSettings):
    """Redis connection used by the primary embedding queue and arq."""

    model_config = _settings_config("redis_")

    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    db: int = Field(default=0, ge=0)
    password: str | None = None
    socket_timeout_seconds: float = Field(default=5.0, ge=0.1)


class QdrantSettings(BaseAppSettings):
    """Qdrant vector index configuration."""

    model_config = _settings_config("qdrant_")

    url: str = "http://localhost:6333"
    api_key: str | None = None
    collection: str = "knowledge_vectors"
    vector_size: int = Field(default=1536, ge=1)
    distance: str = "Cosine"
    timeout_seconds: float = Field(default=10.0, ge=0.1)


class EmbeddingProvider(str, Enum):
    """Supported embedding backends."""

    OPENAI = "openai"
    SENTENCE_TRANSFORMERS = "sentence_transformers"


class OpenAISettings(BaseAppSettings):
    """Credentials for OpenAI-compatible embedding models."""

    model_config = _settings_config("openai_")

    api_key: str | None = None
    embedding_model: str = Field(default="text-embedding-3-small")
    timeout_seconds: float = Field(default=30.0, ge=0.1)


class EmbeddingConfig(BaseAppSettings):
    """Selects the embedding provider and its local fallback."""

    model_config = _settings_config("embedding_")

    provider: EmbeddingProvider = EmbeddingProvider.OPENAI
    sentence_transformer_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    fallback_to_local: bool = True


class StorageSettings(BaseAppSettings):
    """Object storage configuration for uploaded knowledge files."""

    model_config = _settings_config("storage_")

    endpoint_url: str = "http://localhost:9000"
    bucket: str = "knowledge"
    access_key: str = "minio"
    secret_key: str = "minio123"
    region: str = "us-east-1"
    prefix: str = "knowledge"


class ExtractionSettings(BaseAppSettings):
    """Apache Tika endpoint used to turn uploaded files into text."""

    model_config = _settings_config("extraction_")

    tika_url: str = "http://localhost:9998"
    timeout_seconds: float = Field(default=60.0, ge=0.1)


class QueueSettings(BaseAppSettings):
    """Embedding job queue behaviour shared by all three backends."""

    model_config = _settings_config("queue_")

    stream_key: str = "embedding_jobs"
    consumer_group: str = "embedding_workers"
    consumer_name: str | None = None
    visibility_timeout_seconds: int = Field(default=30, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    primary_enabled: bool = True


class PipelineSettings(BaseAppSettings):
    """Timeouts and batch limits for ingestion and the embedding worker."""

    model_config = _settings_config("pipeline_")

    batch_size: int = Field(default=5, ge=1, le=100)
    worker_concurrency: int = Field(default=5, ge=1)
    job_timeout_seconds: float = Field(default=120.0, ge=1.0)
    stage_timeout_seconds: float = Field(default=30.0, ge=0.1)
    max_content_chars: int = Field(default=8000, ge=1)
    cycle_interval_seconds: int = Field(default=30, ge=1, le=60)
    compensation_attempts: int = Field(default=3, ge=1)


class TelemetrySettings(BaseAppSettings):
    """Shared telemetry configuration."""

    model_config = _settings_config("otel_")

    exporter_endpoint: str | None = None
    exporter_headers: str | None = None
    metrics_host: str = "0.0.0.0"
    metrics_port: int | None = None


class AppSettings(BaseAppSettings):
    """Top level settings object used by the API, the worker and the CLI."""

    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)

    @classmethod
    def load(cls, **kwargs: Any) -> AppSettings:
        """Helper factory that mirrors BaseSettings semantics."""

        return cls(**kwargs)
