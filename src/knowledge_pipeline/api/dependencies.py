"""Dependency wiring for the knowledge pipeline FastAPI application."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from knowledge_pipeline.bootstrap import Pipeline, build_pipeline
from knowledge_pipeline.core.config import AppSettings


@lru_cache
def get_settings() -> AppSettings:
    """Return cached ``AppSettings`` instance."""

    return AppSettings.load()


@lru_cache
def get_pipeline() -> Pipeline:
    """Build the process-wide pipeline on first use."""

    return build_pipeline(get_settings())


async def close_pipeline() -> None:
    """Close the pipeline if one was built."""

    if get_pipeline.cache_info().currsize:
        await get_pipeline().aclose()
        get_pipeline.cache_clear()


SettingsDep = Annotated[AppSettings, Depends(get_settings)]
PipelineDep = Annotated[Pipeline, Depends(get_pipeline)]
