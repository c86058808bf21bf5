"""
Document Lifecycle Service — upload, reindex, archive

Upload (admin):
  1. Validate: file present, ≤ max_upload_bytes, visibility valid
  2. Title = trimmed title or the original filename
  3. document_id = uuid4; key = <company_id>/<document_id>/<sanitized name>
  4. PUT the bytes to S3
  5. INSERT documents row (status=processing)            — own transaction
  6. Enqueue the ingest job (after the row is committed)

Reindex (admin):  status → processing, then enqueue.  Archived documents are
not reindexable (404).
Archive (admin):  status → archived.  Chunks are left in place; retrieval
excludes archived documents inside match_chunks().

Enqueue failures are non-fatal: the document is stored and stays
"processing"; reindex re-submits it.

Security invariants:
  - company_id / user id always come from the verified JWT, never the body.
  - The S3 key prefix is built server-side; only the filename segment is
    client-influenced, and only after sanitization.
"""

from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.token import TokenPayload
from app.core.errors import NotFoundError, PayloadTooLargeError, ValidationError
from app.db.session import RequestScope
from app.models.documents import Document
from app.repositories.documents import DocumentRepository
from app.schemas.documents import IngestJobPayload, Visibility
from app.storage.s3 import S3ObjectStore, build_object_path
from app.workers.queue import IngestQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadedFile:
    filename:     str
    data:         bytes
    content_type: str | None = None


class DocumentService:
    """One instance per request; every dependency is injected."""

    def __init__(
        self,
        scope:  RequestScope,
        user:   TokenPayload,
        store:  S3ObjectStore,
        queue:  IngestQueue,
        bucket: str,
        max_upload_bytes: int,
        repository_factory: Callable[[AsyncSession], DocumentRepository] = DocumentRepository,
    ) -> None:
        self._scope = scope
        self._user = user
        self._store = store
        self._queue = queue
        self._bucket = bucket
        self._max_upload_bytes = max_upload_bytes
        self._repository_factory = repository_factory

    @property
    def max_upload_bytes(self) -> int:
        return self._max_upload_bytes

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        file: UploadedFile | None,
        visibility: str | None,
        title: str | None = None,
    ) -> Document:
        if file is None or not file.filename:
            raise ValidationError("Missing multipart file field: file", {"field": "file"})
        if len(file.data) > self._max_upload_bytes:
            raise PayloadTooLargeError(
                f"Uploaded file exceeds the {self._max_upload_bytes // (1024 * 1024)} MB limit",
                {"size_bytes": len(file.data), "limit_bytes": self._max_upload_bytes},
            )
        try:
            vis = Visibility(visibility)
        except ValueError:
            raise ValidationError("Invalid visibility", {"field": "visibility", "value": visibility})

        doc_title = title.strip() if title and title.strip() else file.filename
        document_id = uuid.uuid4()
        company_id = self._user.company_id
        path = build_object_path(company_id, document_id, file.filename)
        content_type = (
            file.content_type
            or mimetypes.guess_type(file.filename)[0]
            or "application/octet-stream"
        )

        logger.info(
            "Upload start | tenant=%s user=%s doc=%s file=%s size=%d",
            company_id, self._user.user_id, document_id, file.filename, len(file.data),
        )

        await self._store.put(self._bucket, path, file.data, content_type)

        async with self._scope() as session:
            doc = await self._repository_factory(session).create_document(
                document_id=document_id,
                company_id=company_id,
                title=doc_title,
                file_path=path,
                visibility=vis.value,
                created_by=self._user.user_id,
            )

        await self._enqueue(doc)
        return doc

    # ------------------------------------------------------------------
    # Reindex / archive
    # ------------------------------------------------------------------

    async def reindex(self, document_id: UUID) -> Document:
        async with self._scope() as session:
            doc = await self._repository_factory(session).mark_processing(document_id)
        if doc is None:
            raise NotFoundError(f"Document {document_id} not found", {"document_id": str(document_id)})

        logger.info("Reindex requested | tenant=%s doc=%s", doc.company_id, doc.id)
        await self._enqueue(doc)
        return doc

    async def archive(self, document_id: UUID) -> Document:
        async with self._scope() as session:
            doc = await self._repository_factory(session).archive(document_id)
        if doc is None:
            raise NotFoundError(f"Document {document_id} not found", {"document_id": str(document_id)})

        logger.info("Document archived | tenant=%s doc=%s", doc.company_id, doc.id)
        return doc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _enqueue(self, doc: Document) -> None:
        payload = IngestJobPayload(
            doc_id=doc.id,
            company_id=doc.company_id,
            file_path=doc.file_path,
            visibility=doc.visibility,
            uploaded_by_user_id=doc.created_by,
            title=doc.title,
        )
        try:
            await self._queue.enqueue(payload)
        except Exception as exc:
            # Non-fatal: the row is committed; reindex re-submits
            logger.error("Enqueue failed, document left processing | doc=%s error=%s", doc.id, exc)
