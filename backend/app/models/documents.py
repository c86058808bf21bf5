"""
SQLAlchemy ORM Models — Documents & Document Chunks

RLS note: Row-Level Security is enforced at the PostgreSQL level via the
app.current_tenant_id / app.current_role GUCs set by db/session.py.  The
ORM models do NOT add WHERE company_id clauses; RLS handles that.
Visibility filtering for retrieval happens inside the match_chunks() SQL
function, which reads the same GUCs.

Document state machine (status column):
    processing — stored in S3; ingestion job queued or running
    indexed    — chunks + embeddings written; available for retrieval
    failed     — ingestion gave up (terminal error or retries exhausted)
    archived   — hidden by an admin; terminal

    processing → indexed | failed
    indexed | failed → processing        (reindex)
    *          → archived                (admin archive)
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# text-embedding-3-small
EMBEDDING_DIMENSIONS = 1536


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model — documents
# ---------------------------------------------------------------------------

class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('processing', 'indexed', 'failed', 'archived')",
            name="documents_status_check",
        ),
        CheckConstraint(
            "visibility IN ('employee', 'manager', 'admin')",
            name="documents_visibility_check",
        ),
        Index("idx_documents_company_id", "company_id"),
        Index("idx_documents_status",     "company_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )

    # Tenant scope — never supplied by the client; always taken from JWT
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    title:     Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="S3 key: <company_id>/<document_id>/<sanitized_filename>",
    )
    visibility: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="processing",
        server_default="processing",
    )
    created_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} company={self.company_id} "
            f"status={self.status} title={self.title!r}>"
        )


# ---------------------------------------------------------------------------
# DocumentChunk model — document_chunks
# ---------------------------------------------------------------------------

class DocumentChunk(Base):
    """
    One embedded text chunk of a Document.

    An ingestion run deletes every chunk of the document and inserts the new
    set in the same transaction, so (document_id, chunk_index) is always
    0-based and contiguous.
    """

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
        Index("idx_document_chunks_document_id", "document_id"),
        Index("idx_document_chunks_company_id",  "company_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content:     Mapped[str] = mapped_column(Text, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    embedding:   Mapped[list[float]] = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
