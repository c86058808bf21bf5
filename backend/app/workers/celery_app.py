"""
Celery Application Factory

Broker: Redis (redis://) or RabbitMQ (amqp://) from CELERY_BROKER_URL.
Result backend: optional; document state is tracked in PostgreSQL and job
outcomes in the Redis job ledger, not in Celery results.

Queue topology:
  doc_ingest   — one task type, DOC_INGEST_JOB_NAME, task id = document id

There is no module-level app.  The API process builds one for
IngestQueue (producer side only, uses send_task by name) and the worker
entry point builds its own and registers the task on it.

Note: task arguments are logged by Celery.  Payloads carry S3 keys, never
file bytes.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun, task_retry
from kombu import Exchange, Queue

from app.core.config import Settings

logger = logging.getLogger(__name__)

DOC_INGEST_QUEUE_NAME = "doc_ingest"
DOC_INGEST_JOB_NAME   = "doc_ingest.ingest"

INGEST_EXCHANGE = Exchange(DOC_INGEST_QUEUE_NAME, type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        DOC_INGEST_QUEUE_NAME,
        exchange=INGEST_EXCHANGE,
        routing_key=DOC_INGEST_QUEUE_NAME,
        durable=True,
    ),
)

TASK_ROUTES = {
    DOC_INGEST_JOB_NAME: {"queue": DOC_INGEST_QUEUE_NAME},
}


# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app(settings: Settings) -> Celery:
    app = Celery("doc_ingest")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url or "memory://",
        result_backend=settings.celery_result_backend or None,
        task_ignore_result=not settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue=DOC_INGEST_QUEUE_NAME,
        task_default_exchange=DOC_INGEST_QUEUE_NAME,
        task_default_routing_key=DOC_INGEST_QUEUE_NAME,

        # --- Reliability (at-least-once) ---
        task_acks_late=True,              # ack only after the task finishes
        task_reject_on_worker_lost=True,  # redeliver if the worker process dies
        worker_prefetch_multiplier=1,     # one job at a time per worker process

        # --- Timeouts ---
        task_soft_time_limit=300,   # 5 min
        task_time_limit=360,        # 6 min — SIGKILL backstop

        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        worker_max_tasks_per_child=200,
        broker_connection_retry_on_startup=True,
    )
    return app


# ---------------------------------------------------------------------------
# Celery signals — job lifecycle logging
# ---------------------------------------------------------------------------

def _doc_id(kwargs: dict | None) -> str:
    payload = (kwargs or {}).get("payload") or {}
    return payload.get("docId", "?") if isinstance(payload, dict) else "?"


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info("Task start | task_id=%s task=%s doc=%s", task_id, task.name, _doc_id(kwargs))


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, _doc_id(kwargs),
    )


@task_retry.connect
def on_task_retry(request, reason, einfo, **_):
    logger.warning(
        "Task retry | task_id=%s attempt=%d doc=%s reason=%s",
        request.id, request.retries + 1, _doc_id(request.kwargs), reason,
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, _doc_id(kwargs), exception,
    )
