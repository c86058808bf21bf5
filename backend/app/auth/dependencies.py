"""
Composed FastAPI Dependencies

Combines the verified caller + process-wide clients (built once in the app
lifespan and kept on app.state) into per-request service objects.
Route handlers import from here, never from auth/token, db/session or the
client modules directly.

This is the single wiring point for the request context.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from app.auth.rbac import require_role
from app.auth.token import TokenPayload, get_current_user
from app.core.config import get_settings
from app.db.session import RequestScope, request_scope
from app.services.assistant import AssistantService
from app.services.documents import DocumentService


# ---------------------------------------------------------------------------
# 1. Caller-scoped transactions
#    Sets RLS context: tenant, user and role of the authenticated caller
# ---------------------------------------------------------------------------

def get_request_scope(
    user: Annotated[TokenPayload, Depends(get_current_user)],
) -> RequestScope:
    return request_scope(user.company_id, user.user_id, user.role)


# ---------------------------------------------------------------------------
# 2. Services
# ---------------------------------------------------------------------------

def get_document_service(
    request: Request,
    user: Annotated[TokenPayload, Depends(require_role("admin"))],
    scope: Annotated[RequestScope, Depends(get_request_scope)],
) -> DocumentService:
    settings = get_settings()
    state = request.app.state
    return DocumentService(
        scope=scope,
        user=user,
        store=state.object_store,
        queue=state.ingest_queue,
        bucket=settings.s3_bucket,
        max_upload_bytes=settings.max_upload_bytes,
    )


def get_assistant_service(
    request: Request,
    user: Annotated[TokenPayload, Depends(get_current_user)],
    scope: Annotated[RequestScope, Depends(get_request_scope)],
) -> AssistantService:
    state = request.app.state
    return AssistantService(
        scope=scope,
        user=user,
        embeddings=state.embeddings,
        completion=state.completion,
    )


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Documents        = Annotated[DocumentService,  Depends(get_document_service)]
Assistant        = Annotated[AssistantService, Depends(get_assistant_service)]
