from __future__ import annotations

from pathlib import Path

import pytest

from knowledge_pipeline.core.config import AppSettings, PostgresSettings, QueueSettings

pytestmark = pytest.mark.unit


def test_postgres_settings_env_precedence(tmp_path: Path, monkeypatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                "POSTGRES_HOST=from_env_file",
                "POSTGRES_DATABASE=knowledge_store",
                "POSTGRES_USER=file_user",
            ]
        ),
        encoding="utf-8",
    )

    monkeypatch.setenv("POSTGRES_HOST", "from_environment")
    settings = PostgresSettings(_env_file=env_file)

    assert settings.host == "from_environment"
    assert settings.database == "knowledge_store"
    assert settings.user == "file_user"
    assert settings.dsn.startswith("postgresql://file_user:")


def test_postgres_dsn_prefers_explicit_url(monkeypatch) -> None:
    monkeypatch.setenv("POSTGRES_URL", "sqlite:///local.db")

    assert PostgresSettings().dsn == "sqlite:///local.db"


def test_app_settings_composes_sub_settings(monkeypatch) -> None:
    monkeypatch.setenv("REDIS_HOST", "redis.internal")
    monkeypatch.setenv("QUEUE_VISIBILITY_TIMEOUT_SECONDS", "45")
    monkeypatch.setenv("PIPELINE_BATCH_SIZE", "8")

    settings = AppSettings()

    assert settings.redis.host == "redis.internal"
    assert settings.queue.visibility_timeout_seconds == 45
    assert settings.pipeline.batch_size == 8


def test_queue_defaults_match_worker_contract() -> None:
    settings = QueueSettings()

    assert settings.max_attempts == 3
    assert settings.visibility_timeout_seconds == 30
