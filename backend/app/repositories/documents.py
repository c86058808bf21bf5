"""
Document & Chunk Repository

Thin async data access over one AsyncSession.  The session's transaction
(and its RLS context) belongs to the caller; nothing here commits.

Retrieval goes through the match_chunks() SQL function:

    match_chunks(query_embedding vector, match_count int)
      → (chunk_id, document_id, title, content, similarity)

It applies company and visibility scoping server-side from the
app.current_* GUCs, so the query below carries no filters of its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, insert, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, PersistenceError
from app.models.documents import Document, DocumentChunk
from app.processing.chunking import Chunk
from app.schemas.documents import DocumentStatus

logger = logging.getLogger(__name__)

_MATCH_CHUNKS_SQL = text(
    "SELECT chunk_id, document_id, title, content, similarity "
    "FROM match_chunks(CAST(:embedding AS vector), :match_count)"
)


@dataclass(frozen=True)
class ChunkMatch:
    chunk_id:    UUID
    document_id: UUID
    title:       str
    content:     str
    similarity:  float


def _vector_literal(embedding: Sequence[float]) -> str:
    return "[" + ",".join(repr(float(x)) for x in embedding) + "]"


class DocumentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(
        self,
        *,
        document_id: UUID,
        company_id: UUID,
        title: str,
        file_path: str,
        visibility: str,
        created_by: UUID,
    ) -> Document:
        doc = await self._session.scalar(
            insert(Document)
            .values(
                id=document_id,
                company_id=company_id,
                title=title,
                file_path=file_path,
                visibility=visibility,
                status=DocumentStatus.PROCESSING.value,
                created_by=created_by,
            )
            .returning(Document)
        )
        if doc is None:
            raise PersistenceError("Document insert returned no row", {"document_id": str(document_id)})
        return doc

    async def _set_status(self, document_id: UUID, status: DocumentStatus, *allowed_from: DocumentStatus):
        stmt = (
            update(Document)
            .where(Document.id == document_id)
            .values(status=status.value)
            .returning(Document)
        )
        if allowed_from:
            stmt = stmt.where(Document.status.in_([s.value for s in allowed_from]))
        return await self._session.scalar(stmt)

    async def mark_indexed(self, document_id: UUID) -> None:
        """
        processing | indexed | failed → indexed.

        A document archived while its job ran (or not visible at all) raises
        NotFoundError so the surrounding transaction rolls back the chunk
        writes with it.
        """
        doc = await self._set_status(
            document_id,
            DocumentStatus.INDEXED,
            DocumentStatus.PROCESSING, DocumentStatus.INDEXED, DocumentStatus.FAILED,
        )
        if doc is None:
            raise NotFoundError(
                f"Document {document_id} is missing or archived",
                {"document_id": str(document_id)},
            )

    async def mark_failed(self, document_id: UUID) -> bool:
        """Any non-archived state → failed. Returns False if nothing matched."""
        doc = await self._set_status(
            document_id,
            DocumentStatus.FAILED,
            DocumentStatus.PROCESSING, DocumentStatus.INDEXED, DocumentStatus.FAILED,
        )
        return doc is not None

    async def mark_processing(self, document_id: UUID) -> Document | None:
        """Reindex transition; archived documents stay archived."""
        return await self._set_status(
            document_id,
            DocumentStatus.PROCESSING,
            DocumentStatus.PROCESSING, DocumentStatus.INDEXED, DocumentStatus.FAILED,
        )

    async def archive(self, document_id: UUID) -> Document | None:
        return await self._set_status(document_id, DocumentStatus.ARCHIVED)

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def delete_chunks(self, document_id: UUID) -> int:
        result = await self._session.execute(
            delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
        )
        return result.rowcount or 0

    async def insert_chunks(
        self,
        *,
        company_id: UUID,
        document_id: UUID,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Sequence[float]],
    ) -> int:
        if len(chunks) != len(embeddings):
            raise PersistenceError(
                "Chunk/embedding count mismatch",
                {"chunks": len(chunks), "embeddings": len(embeddings)},
            )
        if not chunks:
            return 0

        rows = [
            {
                "company_id":  company_id,
                "document_id": document_id,
                "chunk_index": chunk.index,
                "content":     chunk.content,
                "token_count": chunk.token_count,
                "embedding":   list(vector),
            }
            for chunk, vector in zip(chunks, embeddings)
        ]
        result = await self._session.execute(
            insert(DocumentChunk).returning(DocumentChunk.id),
            rows,
        )
        inserted = len(result.scalars().all())
        if inserted != len(rows):
            raise PersistenceError(
                "Chunk insert returned fewer rows than sent",
                {"expected": len(rows), "inserted": inserted},
            )
        return inserted

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def match_chunks(self, embedding: Sequence[float], match_count: int) -> list[ChunkMatch]:
        result = await self._session.execute(
            _MATCH_CHUNKS_SQL,
            {"embedding": _vector_literal(embedding), "match_count": match_count},
        )
        return [
            ChunkMatch(
                chunk_id=row.chunk_id,
                document_id=row.document_id,
                title=row.title,
                content=row.content,
                similarity=float(row.similarity),
            )
            for row in result
        ]
