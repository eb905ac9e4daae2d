"""ARQ worker that triggers embedding cycles on a fixed interval.

Run with ``arq knowledge_pipeline.scheduler.WorkerSettings``. The pipeline
itself never schedules work; this process is the external trigger.
"""

from __future__ import annotations

import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from knowledge_pipeline.bootstrap import Pipeline, build_pipeline
from knowledge_pipeline.core.config import AppSettings
from knowledge_pipeline.core.logging import configure_logging
from knowledge_pipeline.core.telemetry import init_telemetry, start_metrics_exporter

logger = logging.getLogger(__name__)

SERVICE_NAME = "embedding_worker"


async def startup(ctx: dict[str, Any]) -> None:
    """Initialise telemetry and build the pipeline shared by every cycle."""

    settings = AppSettings.load()
    configure_logging()
    init_telemetry(SERVICE_NAME, settings.telemetry)
    start_metrics_exporter(settings.telemetry)

    ctx["settings"] = settings
    ctx["pipeline"] = build_pipeline(settings)
    logger.info(
        "embedding worker started",
        extra={
            "interval_seconds": settings.pipeline.cycle_interval_seconds,
            "batch_size": settings.pipeline.batch_size,
        },
    )


async def shutdown(ctx: dict[str, Any]) -> None:
    """Release connections held by the pipeline."""

    pipeline: Pipeline | None = ctx.get("pipeline")
    if pipeline is not None:
        await pipeline.aclose()


async def run_embedding_cycle(ctx: dict[str, Any]) -> dict[str, Any]:
    """Run one worker cycle and return its report."""

    pipeline: Pipeline = ctx["pipeline"]
    report = await pipeline.run_cycle()
    return report.as_dict()


def cycle_seconds(interval: int) -> set[int]:
    """Seconds of the minute at which a cycle fires for ``interval``."""

    interval = max(1, min(interval, 60))
    return set(range(0, 60, interval))


def _redis_settings() -> RedisSettings:
    settings = AppSettings.load()
    return RedisSettings(
        host=settings.redis.host,
        port=settings.redis.port,
        database=settings.redis.db,
        password=settings.redis.password,
    )


class WorkerSettings:
    """ARQ worker configuration."""

    on_startup = startup
    on_shutdown = shutdown
    cron_jobs = [
        cron(
            run_embedding_cycle,
            second=cycle_seconds(AppSettings.load().pipeline.cycle_interval_seconds),
            unique=True,
            run_at_startup=True,
        )
    ]
    redis_settings = _redis_settings()
