"""
Celery Tasks — Document Ingestion Worker

Task: DOC_INGEST_JOB_NAME  (kwargs: {"payload": IngestJobPayload wire dict})
  1. Clear the pending marker (re-enqueues from now on queue a fresh run)
     Ledger writes are best-effort; a Redis error is logged, never raised
  2. Validate the payload; a malformed payload is rejected before any I/O
  3. Run IngestionJob
  4. On success: record in the completed ledger
  5. On failure: best-effort mark the document failed, then
       - terminal error (validation, unsupported type, empty document,
         missing object)          → record dead letter, no retry
       - transient error, attempts left → retry after 5s · 2^n
       - transient error, last attempt  → record dead letter

Retry policy:  MAX_ATTEMPTS = 5 → countdowns 5s, 10s, 20s, 40s.

The document may sit in "failed" between attempts; a later successful
attempt moves it to "indexed".
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import redis
from celery import Celery, Task

from app.core.errors import AppError, ValidationError
from app.schemas.documents import IngestJobPayload
from app.schemas.results import Rejected, parse_model
from app.services.ingestion import IngestionJob, IngestResult
from app.workers.celery_app import DOC_INGEST_JOB_NAME
from app.workers.queue import JobLedger

logger = logging.getLogger(__name__)

MAX_ATTEMPTS         = 5
BACKOFF_BASE_SECONDS = 5


def retry_countdown(retries: int) -> int:
    """Delay before the next attempt, given how many retries already ran."""
    return BACKOFF_BASE_SECONDS * (2 ** retries)


def is_terminal(exc: BaseException) -> bool:
    return isinstance(exc, AppError) and not exc.retryable


# ---------------------------------------------------------------------------
# Async runner
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

class AsyncRunner:
    """
    One event loop per worker process, created lazily after fork.
    Async clients built inside run() stay bound to this loop across tasks.
    """

    def __init__(self) -> None:
        self._loop: asyncio.AbstractEventLoop | None = None

    def run(self, coro):
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop.run_until_complete(coro)

    def close(self) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.close()


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------

class IngestWorker:
    def __init__(
        self,
        job: IngestionJob,
        ledger: JobLedger | None = None,
        runner: AsyncRunner | None = None,
    ) -> None:
        self._job = job
        self._ledger = ledger
        self._runner = runner or AsyncRunner()

    async def handle(self, raw_payload: Any) -> IngestResult:
        parsed = parse_model(IngestJobPayload, raw_payload)
        if isinstance(parsed, Rejected):
            logger.error("Ingest payload rejected | errors=%s", parsed.summary())
            raise ValidationError(
                f"Malformed ingest payload: {parsed.summary()}",
                {"errors": parsed.errors},
            )

        payload = parsed.value
        try:
            return await self._job.run(payload)
        except Exception as exc:
            logger.error(
                "Ingest failed | doc=%s tenant=%s error=%s: %s",
                payload.doc_id, payload.company_id, type(exc).__name__, exc,
            )
            await self._mark_failed_quietly(payload)
            raise

    async def _mark_failed_quietly(self, payload: IngestJobPayload) -> None:
        try:
            await self._job.mark_failed(payload)
        except Exception as secondary:
            # the original failure is the one that propagates
            logger.error(
                "Could not mark document failed | doc=%s error=%s",
                payload.doc_id, secondary,
            )

    # ------------------------------------------------------------------
    # Synchronous entry points used by the Celery task
    # ------------------------------------------------------------------

    def execute(self, raw_payload: Any) -> IngestResult:
        return self._runner.run(self.handle(raw_payload))

    def job_started(self, raw_payload: Any) -> None:
        doc_id = raw_payload.get("docId") if isinstance(raw_payload, dict) else None
        if self._ledger is None or not doc_id:
            return
        try:
            self._ledger.clear_pending(doc_id)
        except redis.RedisError as exc:
            logger.warning("Could not clear pending marker | doc=%s error=%s", doc_id, exc)

    def job_completed(self, job_id: str, raw_payload: Any, result: IngestResult) -> None:
        if self._ledger is None:
            return
        try:
            self._ledger.record_completed(job_id, raw_payload, _result_dict(result))
        except redis.RedisError as exc:
            logger.warning("Could not record completed job | job_id=%s error=%s", job_id, exc)

    def job_dead(self, job_id: str, raw_payload: Any, exc: BaseException, attempts: int) -> None:
        logger.error(
            "Ingest dead-lettered | job_id=%s attempts=%d error=%s", job_id, attempts, exc,
        )
        if self._ledger is None:
            return
        try:
            self._ledger.record_failed(job_id, raw_payload, f"{type(exc).__name__}: {exc}", attempts)
        except redis.RedisError as secondary:
            # the ingest error is the one that propagates
            logger.warning("Could not record dead letter | job_id=%s error=%s", job_id, secondary)

    def close(self) -> None:
        self._runner.close()


def _result_dict(result: IngestResult) -> dict[str, Any]:
    return {
        "document_id": str(result.document_id),
        "chunk_count": result.chunk_count,
        "replaced":    result.replaced,
    }


# ---------------------------------------------------------------------------
# Task registration
# ---------------------------------------------------------------------------

def register_tasks(app: Celery, get_worker: Callable[[], IngestWorker]) -> Task:
    """
    Register the ingest task on app.  get_worker is called inside the task
    so each forked worker process builds its own IngestWorker.
    """

    @app.task(
        name=DOC_INGEST_JOB_NAME,
        bind=True,
        max_retries=MAX_ATTEMPTS - 1,
        acks_late=True,
        reject_on_worker_lost=True,
    )
    def ingest_document(self: Task, payload: dict[str, Any]) -> dict[str, Any]:
        worker = get_worker()
        job_id = self.request.id or "?"
        attempt = self.request.retries + 1

        worker.job_started(payload)
        try:
            result = worker.execute(payload)
        except Exception as exc:
            if is_terminal(exc) or self.request.retries >= self.max_retries:
                worker.job_dead(job_id, payload, exc, attempt)
                raise
            raise self.retry(exc=exc, countdown=retry_countdown(self.request.retries))

        worker.job_completed(job_id, payload, result)
        logger.info(
            "Ingest job completed | job_id=%s attempt=%d chunks=%d",
            job_id, attempt, result.chunk_count,
        )
        return _result_dict(result)

    return ingest_document
