"""API routers."""

from . import content, embeddings

__all__ = ["content", "embeddings"]
