from __future__ import annotations

from pathlib import Path
from uuid import UUID

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import create_engine

from knowledge_pipeline.core.db.models import KnowledgeSource
from knowledge_pipeline.core.db.session import init_db, session_scope


@pytest.fixture()
def engine(tmp_path: Path) -> Engine:
    """File-backed SQLite database; sessions run in worker threads."""

    db_engine = create_engine(
        f"sqlite:///{tmp_path / 'pipeline.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(db_engine)
    yield db_engine
    db_engine.dispose()


def _create_source(
    engine: Engine,
    *,
    embedding_model: str = "text-embedding-3-small",
    embedding_dimensions: int | None = None,
) -> UUID:
    with session_scope(engine) as session:
        source = KnowledgeSource(
            owner_id="tenant-1",
            name="Support articles",
            embedding_model=embedding_model,
            embedding_dimensions=embedding_dimensions,
        )
        session.add(source)
        session.flush()
        return source.id


@pytest.fixture()
def knowledge_source_id(engine: Engine) -> UUID:
    return _create_source(engine)


@pytest.fixture()
def make_source(engine: Engine):
    """Create extra knowledge sources, e.g. with a fixed embedding dimension."""

    def _make(**kwargs) -> UUID:
        return _create_source(engine, **kwargs)

    return _make
