"""Core configuration, logging and domain building blocks."""

from . import config, domain, errors, logging
from .config import AppSettings
from .domain import ContentItem, ContentType, KnowledgeSourceInfo
from .logging import configure_logging, get_logger

__all__ = [
    "config",
    "domain",
    "errors",
    "logging",
    "AppSettings",
    "ContentItem",
    "ContentType",
    "KnowledgeSourceInfo",
    "configure_logging",
    "get_logger",
]
