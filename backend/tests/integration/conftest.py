"""
Integration fixtures — the real FastAPI app with infrastructure swapped out

What is mocked vs real
──────────────────────
  ✅ Real: routing, multipart parsing, JWT signature verification, RBAC,
           pydantic validation, exception handlers, services
  🔲 Mock: JWKS endpoint       (_fetch_jwks patched → test RSA key)
  🔲 Mock: PostgreSQL          (in-memory repositories from tests/conftest.py)
  🔲 Mock: S3 / OpenAI / broker (in-memory store, fake embeddings, AsyncMock queue)

The services are rebuilt through dependency_overrides with the same
dependency chain as production (require_role / get_current_user), so
auth failures still surface as 401 / 403.
"""

from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import ASGITransport, AsyncClient

from app.auth.dependencies import get_assistant_service, get_document_service
from app.auth.rbac import require_role
from app.auth.token import TokenPayload, get_current_user
from app.services.assistant import AssistantService
from app.services.documents import DocumentService

UPLOAD_LIMIT = 2048


@pytest.fixture
def ingest_queue() -> AsyncMock:
    queue = AsyncMock()
    queue.enqueue.return_value = True
    return queue


@pytest.fixture
def completion() -> AsyncMock:
    completion = AsyncMock()
    completion.answer.return_value = "Answer grounded in SOURCE 1."
    return completion


@pytest.fixture
def app(scopes, object_store, ingest_queue, fake_embeddings, completion, documents_repo, conversations_repo, test_jwks):
    from app.main import app

    def _documents(user: TokenPayload = Depends(require_role("admin"))) -> DocumentService:
        return DocumentService(
            scope=scopes.request(),
            user=user,
            store=object_store,
            queue=ingest_queue,
            bucket="company-docs",
            max_upload_bytes=UPLOAD_LIMIT,
            repository_factory=documents_repo,
        )

    def _assistant(user: TokenPayload = Depends(get_current_user)) -> AssistantService:
        return AssistantService(
            scope=scopes.request(),
            user=user,
            embeddings=fake_embeddings,
            completion=completion,
            conversation_repository=conversations_repo,
            document_repository=documents_repo,
        )

    app.dependency_overrides[get_document_service] = _documents
    app.dependency_overrides[get_assistant_service] = _assistant

    with patch("app.auth.token._fetch_jwks", new=AsyncMock(return_value=test_jwks)):
        yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """httpx >= 0.28 removed the 'app=' shortcut; use ASGITransport explicitly."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def auth_header(make_token):
    def _header(role: str = "employee") -> dict:
        return {"Authorization": f"Bearer {make_token(role=role)}"}
    return _header
