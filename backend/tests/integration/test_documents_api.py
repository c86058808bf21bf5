"""
Integration Tests — /api/v1/docs
═════════════════════════════════
Exercises the FastAPI stack end to end: multipart parsing, JWT + RBAC,
error envelope, response schema.

How to run
──────────
  pytest -m integration backend/tests/integration/test_documents_api.py -v
"""

import uuid

import pytest

pytestmark = [pytest.mark.integration]

# matches UPLOAD_LIMIT in tests/integration/conftest.py
LIMIT = 2048


def _upload(name="handbook.md", content=b"# Handbook\n\nPTO is 25 days.", content_type="text/markdown"):
    return {"file": (name, content, content_type)}


# ─────────────────────────────────────────────────────────────────────────────
# POST /api/v1/docs
# ─────────────────────────────────────────────────────────────────────────────

class TestUpload:

    async def test_admin_upload_returns_201_processing(
        self, client, auth_header, object_store, ingest_queue, company_id,
    ):
        resp = await client.post(
            "/api/v1/docs",
            files=_upload(),
            data={"visibility": "employee", "title": "Employee Handbook"},
            headers=auth_header("admin"),
        )

        assert resp.status_code == 201, resp.text
        doc = resp.json()["doc"]
        assert doc["status"] == "processing"
        assert doc["title"] == "Employee Handbook"
        assert doc["visibility"] == "employee"
        assert doc["company_id"] == str(company_id)
        assert doc["file_path"] == f"{company_id}/{doc['id']}/handbook.md"
        assert ("company-docs", doc["file_path"]) in object_store.objects
        assert ingest_queue.enqueue.await_args.args[0].to_wire()["docId"] == doc["id"]
        assert "X-Request-ID" in resp.headers

    async def test_title_defaults_to_filename(self, client, auth_header):
        resp = await client.post(
            "/api/v1/docs",
            files=_upload(name="faq.txt", content_type="text/plain"),
            data={"visibility": "manager"},
            headers=auth_header("admin"),
        )
        assert resp.status_code == 201
        assert resp.json()["doc"]["title"] == "faq.txt"

    @pytest.mark.parametrize("role", ["employee", "manager"])
    async def test_non_admin_forbidden(self, client, auth_header, role, object_store):
        resp = await client.post(
            "/api/v1/docs",
            files=_upload(),
            data={"visibility": "employee"},
            headers=auth_header(role),
        )
        assert resp.status_code == 403
        assert object_store.objects == {}

    async def test_missing_token_rejected(self, client):
        resp = await client.post("/api/v1/docs", files=_upload(), data={"visibility": "employee"})
        assert resp.status_code in (401, 403)

    async def test_expired_token_is_401(self, client, make_token):
        resp = await client.post(
            "/api/v1/docs",
            files=_upload(),
            data={"visibility": "employee"},
            headers={"Authorization": f"Bearer {make_token(role='admin', expired=True)}"},
        )
        assert resp.status_code == 401

    async def test_missing_file_is_400(self, client, auth_header):
        resp = await client.post(
            "/api/v1/docs",
            data={"visibility": "employee"},
            headers=auth_header("admin"),
        )
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR"

    async def test_invalid_visibility_is_400(self, client, auth_header):
        resp = await client.post(
            "/api/v1/docs",
            files=_upload(),
            data={"visibility": "public"},
            headers=auth_header("admin"),
        )
        body = resp.json()
        assert resp.status_code == 400
        assert body["message"] == "Invalid visibility"

    async def test_oversize_is_413(self, client, auth_header, object_store):
        resp = await client.post(
            "/api/v1/docs",
            files=_upload(content=b"x" * (LIMIT + 1)),
            data={"visibility": "employee"},
            headers=auth_header("admin"),
        )
        assert resp.status_code == 413
        assert resp.json()["error_code"] == "FILE_TOO_LARGE"
        assert object_store.objects == {}


# ─────────────────────────────────────────────────────────────────────────────
# POST /api/v1/docs/{id}/reindex  +  DELETE /api/v1/docs/{id}
# ─────────────────────────────────────────────────────────────────────────────

class TestReindexAndArchive:

    @pytest.fixture
    def existing(self, documents_repo, company_id, user_id):
        return documents_repo.add_document(
            id=uuid.uuid4(),
            company_id=company_id,
            title="Handbook",
            file_path=f"{company_id}/x/handbook.md",
            visibility="employee",
            status="indexed",
            created_by=user_id,
        )

    async def test_reindex(self, client, auth_header, existing, ingest_queue):
        resp = await client.post(f"/api/v1/docs/{existing.id}/reindex", headers=auth_header("admin"))

        assert resp.status_code == 200
        assert resp.json()["doc"]["status"] == "processing"
        ingest_queue.enqueue.assert_awaited_once()

    async def test_reindex_unknown_is_404(self, client, auth_header):
        resp = await client.post(f"/api/v1/docs/{uuid.uuid4()}/reindex", headers=auth_header("admin"))

        assert resp.status_code == 404
        assert resp.json()["error_code"] == "NOT_FOUND"

    async def test_reindex_bad_id_is_validation_error(self, client, auth_header):
        resp = await client.post("/api/v1/docs/not-a-uuid/reindex", headers=auth_header("admin"))

        assert resp.status_code == 422
        assert resp.json()["error_code"] == "VALIDATION_ERROR"

    async def test_archive(self, client, auth_header, existing):
        resp = await client.delete(f"/api/v1/docs/{existing.id}", headers=auth_header("admin"))

        assert resp.status_code == 200
        assert resp.json()["doc"]["status"] == "archived"

    async def test_archive_requires_admin(self, client, auth_header, existing):
        resp = await client.delete(f"/api/v1/docs/{existing.id}", headers=auth_header("manager"))

        assert resp.status_code == 403
        assert existing.status == "indexed"
