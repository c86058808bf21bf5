"""
Ingestion Job Queue — Producer Side + Job Ledger

IngestQueue.enqueue(payload)
────────────────────────────
  Fire-and-forget submission of DOC_INGEST_JOB_NAME with task id = docId.

  Collapsing duplicates:  a Redis marker  doc_ingest:pending:<docId>  is
  set with SET NX before sending.  While the marker exists (job queued but
  not yet started) further enqueues for the same document are dropped.
  The worker deletes the marker when the job starts, so a reindex issued
  while a job is running still queues a fresh run.

  Disabled mode:  with no broker configured, enqueue() logs a warning and
  returns False; the document stays "processing" until an operator
  reindexes it once a broker is available.

JobLedger
─────────
  Bounded history of finished jobs, newest first:
      doc_ingest:completed   last 1000 successes
      doc_ingest:failed      last 1000 terminal failures (dead letters)
  Written by the worker with a synchronous Redis client (Celery task bodies
  are synchronous).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any
from uuid import UUID

import redis
import redis.asyncio as aioredis
from celery import Celery

from app.core.config import Settings
from app.core.errors import ProviderError
from app.schemas.documents import IngestJobPayload
from app.workers.celery_app import (
    DOC_INGEST_JOB_NAME,
    DOC_INGEST_QUEUE_NAME,
    create_celery_app,
)

logger = logging.getLogger(__name__)

PENDING_MARKER_TTL   = 6 * 3600   # seconds; upper bound on a lost marker
LEDGER_MAX_ENTRIES   = 1000
COMPLETED_LEDGER_KEY = f"{DOC_INGEST_QUEUE_NAME}:completed"
FAILED_LEDGER_KEY    = f"{DOC_INGEST_QUEUE_NAME}:failed"


def pending_key(doc_id: UUID | str) -> str:
    return f"{DOC_INGEST_QUEUE_NAME}:pending:{doc_id}"


# ---------------------------------------------------------------------------
# Producer
# ---------------------------------------------------------------------------

class IngestQueue:
    """
    Owned by the API process (built in the FastAPI lifespan, stored on
    app.state) and injected into DocumentService.
    """

    def __init__(
        self,
        celery_app: Celery | None,
        redis_client: aioredis.Redis | None = None,
    ) -> None:
        self._app = celery_app
        self._redis = redis_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "IngestQueue":
        if not settings.queue_enabled:
            logger.warning("Ingest queue disabled | reason=CELERY_BROKER_URL not set")
            return cls(celery_app=None)

        redis_client = None
        if settings.ledger_redis_url.startswith(("redis://", "rediss://")):
            redis_client = aioredis.from_url(settings.ledger_redis_url, decode_responses=True)
        return cls(celery_app=create_celery_app(settings), redis_client=redis_client)

    @property
    def enabled(self) -> bool:
        return self._app is not None

    async def enqueue(self, payload: IngestJobPayload) -> bool:
        """Returns True if a new job was submitted."""
        if self._app is None:
            logger.warning("Enqueue skipped (queue disabled) | doc=%s", payload.doc_id)
            return False

        marker = pending_key(payload.doc_id)
        if self._redis is not None:
            acquired = await self._redis.set(marker, str(int(time.time())), nx=True, ex=PENDING_MARKER_TTL)
            if not acquired:
                logger.info("Enqueue collapsed (job already pending) | doc=%s", payload.doc_id)
                return False

        app = self._app
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: app.send_task(
                    DOC_INGEST_JOB_NAME,
                    kwargs={"payload": payload.to_wire()},
                    task_id=str(payload.doc_id),
                    queue=DOC_INGEST_QUEUE_NAME,
                ),
            )
        except Exception as exc:
            if self._redis is not None:
                await self._redis.delete(marker)
            logger.error("Enqueue failed | doc=%s error=%s", payload.doc_id, exc)
            raise ProviderError("broker", f"Failed to enqueue ingestion job: {exc}") from exc

        logger.info(
            "Ingest job enqueued | doc=%s tenant=%s queue=%s",
            payload.doc_id, payload.company_id, DOC_INGEST_QUEUE_NAME,
        )
        return True

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
        if self._app is not None:
            self._app.close()


# ---------------------------------------------------------------------------
# Worker-side ledger
# ---------------------------------------------------------------------------

class JobLedger:
    def __init__(self, client: redis.Redis, max_entries: int = LEDGER_MAX_ENTRIES) -> None:
        self._client = client
        self._max_entries = max_entries

    @classmethod
    def from_url(cls, url: str) -> "JobLedger":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def clear_pending(self, doc_id: UUID | str) -> None:
        self._client.delete(pending_key(doc_id))

    def record_completed(self, job_id: str, payload: dict[str, Any], result: dict[str, Any]) -> None:
        self._push(COMPLETED_LEDGER_KEY, {"job_id": job_id, "payload": payload, "result": result})

    def record_failed(self, job_id: str, payload: dict[str, Any], error: str, attempts: int) -> None:
        self._push(
            FAILED_LEDGER_KEY,
            {"job_id": job_id, "payload": payload, "error": error, "attempts": attempts},
        )

    def _push(self, key: str, entry: dict[str, Any]) -> None:
        entry["finished_at"] = int(time.time())
        pipe = self._client.pipeline()
        pipe.lpush(key, json.dumps(entry, default=str))
        pipe.ltrim(key, 0, self._max_entries - 1)
        pipe.execute()

    def recent(self, key: str, limit: int = 50) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self._client.lrange(key, 0, limit - 1)]
