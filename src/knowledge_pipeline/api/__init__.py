"""HTTP surface of the knowledge pipeline."""

from .app import create_app

__all__ = ["create_app"]
