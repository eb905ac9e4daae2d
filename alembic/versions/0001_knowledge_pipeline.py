"""Create knowledge sources, content tables and embedding job tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_knowledge_pipeline"
down_revision = None
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    ]


def _content_table(name: str, *columns: sa.Column) -> None:
    op.create_table(
        name,
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("knowledge_source_id", UUID, nullable=False),
        *columns,
        sa.ForeignKeyConstraint(
            ["knowledge_source_id"], ["knowledge_sources.id"], ondelete="CASCADE"
        ),
    )
    op.create_index(f"ix_{name}_knowledge_source_id", name, ["knowledge_source_id"])


def upgrade() -> None:
    op.create_table(
        "knowledge_sources",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("owner_id", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column(
            "embedding_model",
            sa.String(length=120),
            nullable=False,
            server_default="text-embedding-3-small",
        ),
        sa.Column("embedding_dimensions", sa.Integer(), nullable=True),
    )
    op.create_index("ix_knowledge_sources_owner_id", "knowledge_sources", ["owner_id"])

    _content_table("text_contents", sa.Column("body", sa.Text(), nullable=False))
    _content_table(
        "qa_contents",
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False, server_default=""),
    )
    _content_table(
        "website_contents",
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
    )
    _content_table(
        "file_contents",
        sa.Column("storage_path", sa.String(length=1024), nullable=True),
        sa.Column(
            "mime_type",
            sa.String(length=255),
            nullable=False,
            server_default="application/octet-stream",
        ),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("extracted_text", sa.Text(), nullable=True),
    )

    op.create_table(
        "embedding_jobs",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("knowledge_source_id", UUID, nullable=False),
        sa.Column("content_id", UUID, nullable=False),
        sa.Column("content_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["knowledge_source_id"], ["knowledge_sources.id"], ondelete="CASCADE"
        ),
    )
    op.create_index(
        "ix_embedding_jobs_knowledge_source_id", "embedding_jobs", ["knowledge_source_id"]
    )
    op.create_index(
        "ix_embedding_jobs_status_created", "embedding_jobs", ["status", "created_at"]
    )
    op.create_index(
        "ix_embedding_jobs_content_key",
        "embedding_jobs",
        ["knowledge_source_id", "content_id", "content_type"],
    )

    op.create_table(
        "embedding_queue_markers",
        sa.Column("job_id", UUID, primary_key=True, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["job_id"], ["embedding_jobs.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_embedding_queue_markers_status_created",
        "embedding_queue_markers",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_embedding_queue_markers_status_created", table_name="embedding_queue_markers"
    )
    op.drop_table("embedding_queue_markers")
    op.drop_index("ix_embedding_jobs_content_key", table_name="embedding_jobs")
    op.drop_index("ix_embedding_jobs_status_created", table_name="embedding_jobs")
    op.drop_index("ix_embedding_jobs_knowledge_source_id", table_name="embedding_jobs")
    op.drop_table("embedding_jobs")
    for name in ("file_contents", "website_contents", "qa_contents", "text_contents"):
        op.drop_index(f"ix_{name}_knowledge_source_id", table_name=name)
        op.drop_table(name)
    op.drop_index("ix_knowledge_sources_owner_id", table_name="knowledge_sources")
    op.drop_table("knowledge_sources")
