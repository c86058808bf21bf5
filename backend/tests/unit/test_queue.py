"""
Unit Tests — Ingest Queue Producer & Job Ledger
════════════════════════════════════════════════
Tests for app/workers/queue.py

Coverage:
  ✅ disabled queue (no broker) is a logged no-op
  ✅ send_task carries the camelCase wire payload, task id = docId
  ✅ pending marker collapses duplicate enqueues
  ✅ broker failure releases the marker and raises ProviderError
  ✅ ledger entries are pushed newest-first and trimmed to the cap
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.config import Settings
from app.core.errors import ProviderError
from app.schemas.documents import IngestJobPayload
from app.workers.celery_app import DOC_INGEST_JOB_NAME, DOC_INGEST_QUEUE_NAME
from app.workers.queue import (
    COMPLETED_LEDGER_KEY,
    FAILED_LEDGER_KEY,
    PENDING_MARKER_TTL,
    IngestQueue,
    JobLedger,
    pending_key,
)

pytestmark = [pytest.mark.unit, pytest.mark.queue]


@pytest.fixture
def payload(company_id, user_id, document_id) -> IngestJobPayload:
    return IngestJobPayload(
        doc_id=document_id,
        company_id=company_id,
        file_path=f"{company_id}/{document_id}/handbook.md",
        visibility="manager",
        uploaded_by_user_id=user_id,
        title="Handbook",
    )


class TestIngestQueue:

    async def test_disabled_queue_skips(self, payload):
        queue = IngestQueue(celery_app=None)
        assert queue.enabled is False
        assert await queue.enqueue(payload) is False

    def test_from_settings_without_broker_is_disabled(self):
        settings = Settings(database_url="postgresql+asyncpg://x/y", celery_broker_url="")
        assert IngestQueue.from_settings(settings).enabled is False

    async def test_send_task_uses_wire_payload_and_doc_id(self, payload, document_id, company_id):
        app = MagicMock()
        queue = IngestQueue(celery_app=app)

        assert await queue.enqueue(payload) is True

        app.send_task.assert_called_once()
        args, kwargs = app.send_task.call_args
        assert args == (DOC_INGEST_JOB_NAME,)
        assert kwargs["task_id"] == str(document_id)
        assert kwargs["queue"] == DOC_INGEST_QUEUE_NAME
        assert kwargs["kwargs"] == {
            "payload": {
                "docId":            str(document_id),
                "companyId":        str(company_id),
                "filePath":         payload.file_path,
                "visibility":       "manager",
                "uploadedByUserId": str(payload.uploaded_by_user_id),
                "title":            "Handbook",
            }
        }

    async def test_pending_marker_collapses_duplicates(self, payload, document_id):
        app = MagicMock()
        redis_client = AsyncMock()
        redis_client.set.side_effect = [True, None]
        queue = IngestQueue(celery_app=app, redis_client=redis_client)

        assert await queue.enqueue(payload) is True
        assert await queue.enqueue(payload) is False

        assert app.send_task.call_count == 1
        key = redis_client.set.await_args.args[0]
        assert key == pending_key(document_id) == f"doc_ingest:pending:{document_id}"
        assert redis_client.set.await_args.kwargs == {"nx": True, "ex": PENDING_MARKER_TTL}

    async def test_broker_failure_releases_marker(self, payload, document_id):
        app = MagicMock()
        app.send_task.side_effect = ConnectionError("broker down")
        redis_client = AsyncMock()
        redis_client.set.return_value = True
        queue = IngestQueue(celery_app=app, redis_client=redis_client)

        with pytest.raises(ProviderError) as exc_info:
            await queue.enqueue(payload)

        assert exc_info.value.provider == "broker"
        redis_client.delete.assert_awaited_once_with(pending_key(document_id))

    async def test_close_releases_clients(self):
        app = MagicMock()
        redis_client = AsyncMock()
        await IngestQueue(celery_app=app, redis_client=redis_client).close()
        redis_client.aclose.assert_awaited_once()
        app.close.assert_called_once()


class TestJobLedger:

    def test_record_completed_pushes_and_trims(self):
        client = MagicMock()
        pipe = client.pipeline.return_value
        ledger = JobLedger(client, max_entries=1000)

        ledger.record_completed("job-1", {"docId": "d"}, {"chunk_count": 2})

        key, raw = pipe.lpush.call_args.args
        assert key == COMPLETED_LEDGER_KEY == "doc_ingest:completed"
        entry = json.loads(raw)
        assert entry["job_id"] == "job-1"
        assert entry["result"] == {"chunk_count": 2}
        assert "finished_at" in entry
        pipe.ltrim.assert_called_once_with(COMPLETED_LEDGER_KEY, 0, 999)
        pipe.execute.assert_called_once()

    def test_record_failed_keeps_error_and_attempts(self):
        client = MagicMock()
        pipe = client.pipeline.return_value
        JobLedger(client, max_entries=10).record_failed("job-2", {"docId": "d"}, "ProviderError: boom", 5)

        key, raw = pipe.lpush.call_args.args
        assert key == FAILED_LEDGER_KEY
        assert json.loads(raw)["attempts"] == 5
        pipe.ltrim.assert_called_once_with(FAILED_LEDGER_KEY, 0, 9)

    def test_clear_pending_deletes_marker(self, document_id):
        client = MagicMock()
        JobLedger(client).clear_pending(document_id)
        client.delete.assert_called_once_with(pending_key(document_id))

    def test_recent_decodes_entries(self):
        client = MagicMock()
        client.lrange.return_value = [json.dumps({"job_id": "b"}), json.dumps({"job_id": "a"})]

        assert [e["job_id"] for e in JobLedger(client).recent(FAILED_LEDGER_KEY, limit=2)] == ["b", "a"]
        client.lrange.assert_called_once_with(FAILED_LEDGER_KEY, 0, 1)
