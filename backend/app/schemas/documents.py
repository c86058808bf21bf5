"""
Document Ingestion — Pydantic Schemas

Covers:
  - Document status / visibility enums (mirrors the documents table checks)
  - IngestJobPayload: the queue wire contract (camelCase field names)
  - DocumentResponse returned by upload / reindex / archive
  - The uniform ErrorResponse envelope used by every 4xx/5xx response
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DocumentStatus(str, Enum):
    """Maps to documents.status. Transitions: processing → indexed | failed."""
    PROCESSING = "processing"
    INDEXED    = "indexed"
    FAILED     = "failed"
    ARCHIVED   = "archived"


class Visibility(str, Enum):
    """Minimum role that can retrieve a document's chunks."""
    EMPLOYEE = "employee"
    MANAGER  = "manager"
    ADMIN    = "admin"


# ---------------------------------------------------------------------------
# Queue wire contract
# ---------------------------------------------------------------------------

class IngestJobPayload(BaseModel):
    """
    Body of a doc_ingest job.  Serialized with camelCase keys:

        {"docId", "companyId", "filePath", "visibility",
         "uploadedByUserId", "title"}

    The job id is always docId.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    doc_id:              UUID       = Field(alias="docId")
    company_id:          UUID       = Field(alias="companyId")
    file_path:           str        = Field(alias="filePath", min_length=1)
    visibility:          Visibility
    uploaded_by_user_id: UUID       = Field(alias="uploadedByUserId")
    title:               str        = Field(min_length=1)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:         UUID
    company_id: UUID
    title:      str
    file_path:  str
    visibility: Visibility
    status:     DocumentStatus
    created_by: UUID
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DocumentEnvelope(BaseModel):
    doc: DocumentResponse


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")
