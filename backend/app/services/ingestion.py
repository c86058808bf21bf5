"""
Document Ingestion Job

Runs inside the worker for one IngestJobPayload:

  1. Download the object from S3 (bucket from settings, key = payload.filePath)
  2. Extract text (.txt / .md / .markdown only)
  3. Chunk: INGEST_MAX_TOKENS words, INGEST_OVERLAP_TOKENS overlap
  4. Embed every chunk in one batch call (order preserved by index)
  5. Delete the document's existing chunks          ┐
  6. Insert the new chunk rows + embeddings          ├ one transaction
  7. Mark the document indexed                       ┘

Idempotency:
  Delivery is at-least-once.  Steps 5–7 replace the whole chunk set inside
  one transaction, so a re-run (retry, duplicate delivery, manual reindex)
  ends with exactly the chunks of the latest run; readers never observe a
  partial or empty set on an indexed document.

Failure semantics:
  Every error propagates.  run() never sets status=failed; that is the
  worker's job (mark_failed) once it has decided the failure is final for
  this attempt.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import AsyncContextManager, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import EmptyDocumentError
from app.processing.chunking import chunk_text
from app.processing.embeddings import EmbeddingClient
from app.processing.extractor import extract_text
from app.repositories.documents import DocumentRepository
from app.schemas.documents import IngestJobPayload
from app.storage.s3 import S3ObjectStore

logger = logging.getLogger(__name__)

INGEST_MAX_TOKENS     = 400
INGEST_OVERLAP_TOKENS = 50

SessionScope = Callable[[UUID], AsyncContextManager[AsyncSession]]


@dataclass(frozen=True)
class IngestResult:
    document_id: UUID
    chunk_count: int
    replaced:    int    # chunks deleted from the previous run


class IngestionJob:
    """
    All collaborators are injected; one instance serves every job in a
    worker process.
    """

    def __init__(
        self,
        object_store:  S3ObjectStore,
        embeddings:    EmbeddingClient,
        session_scope: SessionScope,
        bucket:        str,
        repository_factory: Callable[[AsyncSession], DocumentRepository] = DocumentRepository,
    ) -> None:
        self._store = object_store
        self._embeddings = embeddings
        self._session_scope = session_scope
        self._bucket = bucket
        self._repository_factory = repository_factory

    async def run(self, payload: IngestJobPayload) -> IngestResult:
        t0 = time.monotonic()
        logger.info(
            "Ingest start | doc=%s tenant=%s path=%s",
            payload.doc_id, payload.company_id, payload.file_path,
        )

        data = await self._store.get(self._bucket, payload.file_path)
        extracted = extract_text(payload.file_path, data)

        chunks = chunk_text(extracted.text, INGEST_MAX_TOKENS, INGEST_OVERLAP_TOKENS)
        if not chunks:
            raise EmptyDocumentError(
                f"Document {payload.doc_id} has no extractable text",
                {"document_id": str(payload.doc_id), "path": payload.file_path},
            )

        vectors = await self._embeddings.embed([c.content for c in chunks])

        async with self._session_scope(payload.company_id) as session:
            repo = self._repository_factory(session)
            replaced = await repo.delete_chunks(payload.doc_id)
            inserted = await repo.insert_chunks(
                company_id=payload.company_id,
                document_id=payload.doc_id,
                chunks=chunks,
                embeddings=vectors,
            )
            await repo.mark_indexed(payload.doc_id)

        logger.info(
            "Ingest done | doc=%s tenant=%s kind=%s chunks=%d replaced=%d elapsed_ms=%.0f",
            payload.doc_id, payload.company_id, extracted.kind,
            inserted, replaced, (time.monotonic() - t0) * 1000,
        )
        return IngestResult(document_id=payload.doc_id, chunk_count=inserted, replaced=replaced)

    async def mark_failed(self, payload: IngestJobPayload) -> bool:
        async with self._session_scope(payload.company_id) as session:
            updated = await self._repository_factory(session).mark_failed(payload.doc_id)
        logger.warning(
            "Document marked failed | doc=%s tenant=%s updated=%s",
            payload.doc_id, payload.company_id, updated,
        )
        return updated
