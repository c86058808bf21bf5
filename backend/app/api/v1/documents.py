"""
Document Lifecycle API Router

  POST   /api/v1/docs                 upload + enqueue ingestion   (admin)
  POST   /api/v1/docs/{id}/reindex    status → processing + enqueue (admin)
  DELETE /api/v1/docs/{id}            status → archived              (admin)

Request lifecycle (upload):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. JWT verification → company_id + role                 │
  │ 2. RBAC gate (admin)                                    │
  │ 3. Size + visibility validation                         │
  │ 4. S3 PUT under <company_id>/<document_id>/             │
  │ 5. DB insert (status=processing, RLS-enforced)          │
  │ 6. Ingest job enqueued → 201                            │
  └─────────────────────────────────────────────────────────┘

Errors use the ErrorResponse envelope (see app.main exception handlers).
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, UploadFile, status

from app.auth.dependencies import Documents
from app.schemas.documents import DocumentEnvelope, DocumentResponse, ErrorResponse
from app.services.documents import UploadedFile

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/docs",
    tags=["Documents"],
)

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    401: {"description": "Missing or invalid JWT"},
    403: {"description": "Admin role required"},
    404: {"model": ErrorResponse, "description": "Document not found"},
}


@router.post(
    "",
    response_model=DocumentEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a document for ingestion",
    description=(
        "Accepts .txt / .md / .markdown files up to 25 MB. "
        "Returns 201 immediately with status=processing; ingestion is asynchronous."
    ),
    responses={**_ERRORS, 413: {"model": ErrorResponse, "description": "File exceeds the size limit"}},
)
async def upload_document(
    service:    Documents,
    file:       Optional[UploadFile] = File(None, description="Document file"),
    visibility: Optional[str]        = Form(None, description="employee | manager | admin"),
    title:      Optional[str]        = Form(None, description="Display title; defaults to the filename"),
) -> DocumentEnvelope:
    uploaded = None
    if file is not None:
        # one byte past the limit is enough to reject an oversize upload
        uploaded = UploadedFile(
            filename=file.filename or "",
            data=await file.read(service.max_upload_bytes + 1),
            content_type=file.content_type,
        )
    doc = await service.upload(uploaded, visibility=visibility, title=title)
    return DocumentEnvelope(doc=DocumentResponse.model_validate(doc))


@router.post(
    "/{document_id}/reindex",
    response_model=DocumentEnvelope,
    summary="Re-run ingestion for a document",
    responses=_ERRORS,
)
async def reindex_document(document_id: UUID, service: Documents) -> DocumentEnvelope:
    doc = await service.reindex(document_id)
    return DocumentEnvelope(doc=DocumentResponse.model_validate(doc))


@router.delete(
    "/{document_id}",
    response_model=DocumentEnvelope,
    summary="Archive a document",
    responses=_ERRORS,
)
async def archive_document(document_id: UUID, service: Documents) -> DocumentEnvelope:
    doc = await service.archive(document_id)
    return DocumentEnvelope(doc=DocumentResponse.model_validate(doc))
