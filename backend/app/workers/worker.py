"""
Worker entry point.

    python -m app.workers.worker                 # default: -Q doc_ingest
    python -m app.workers.worker --concurrency=4 # extra args go to celery

Builds the Celery app from settings, registers the ingest task, and hands
over to Celery's worker main loop.  Collaborators (S3, OpenAI, database)
are built lazily inside each forked worker process.
"""

from __future__ import annotations

import logging
import sys
from functools import lru_cache

from app.core.config import Settings, get_settings
from app.db.session import create_session_scope
from app.processing.embeddings import EmbeddingClient
from app.services.ingestion import IngestionJob
from app.storage.s3 import S3ObjectStore
from app.workers.celery_app import DOC_INGEST_QUEUE_NAME, create_celery_app
from app.workers.queue import JobLedger
from app.workers.tasks import IngestWorker, register_tasks

logger = logging.getLogger(__name__)


def build_worker(settings: Settings) -> IngestWorker:
    job = IngestionJob(
        object_store=S3ObjectStore.from_settings(settings),
        embeddings=EmbeddingClient.from_settings(settings),
        session_scope=create_session_scope(settings.database_url),
        bucket=settings.s3_bucket,
    )
    ledger = None
    if settings.ledger_redis_url.startswith(("redis://", "rediss://")):
        ledger = JobLedger.from_url(settings.ledger_redis_url)
    return IngestWorker(job=job, ledger=ledger)


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    settings = get_settings()
    if not settings.queue_enabled:
        raise SystemExit("CELERY_BROKER_URL is required to run the worker")
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set; every ingest job will fail at the embedding step")

    app = create_celery_app(settings)

    @lru_cache(maxsize=1)
    def get_worker() -> IngestWorker:
        return build_worker(settings)

    register_tasks(app, get_worker)

    extra = list(sys.argv[1:] if argv is None else argv)
    logger.info("Worker starting | queue=%s", DOC_INGEST_QUEUE_NAME)
    app.worker_main(["worker", "--loglevel=INFO", "-Q", DOC_INGEST_QUEUE_NAME, *extra])


if __name__ == "__main__":
    main()
