"""
FastAPI Application — Entry Point

Company Knowledge Assistant API

Architecture:
  - All routes are versioned under /api/v1/
  - Authentication is JWT-based (OIDC issuer JWKS) enforced per-route
  - Database RLS context is set per transaction from the verified caller
  - Process-wide clients (S3, embeddings, LLM, ingest queue) are built once
    in the lifespan and kept on app.state
  - Structured JSON error responses on all AppError / validation / 5xx paths

Middleware stack (innermost → outermost):
  1. CORS — restrict to configured origins
  2. Request ID injection — X-Request-ID header on every response
  3. Trusted host — reject Host headers outside ALLOWED_HOSTS (when set)
  4. Gzip — compress responses > 1 KB
  5. Request logging — one log line per request with latency

Missing OPENAI_API_KEY or CELERY_BROKER_URL does not stop startup: the
assistant answers in degraded mode and enqueue becomes a logged no-op.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.assistant import router as assistant_router
from app.api.v1.documents import router as documents_router
from app.core.config import Settings, get_settings
from app.core.errors import AppError
from app.db.session import check_db_health
from app.llm.completion import CompletionClient, build_chat_model
from app.processing.embeddings import EmbeddingClient
from app.schemas.documents import ErrorDetail, ErrorResponse
from app.storage.s3 import S3ObjectStore
from app.workers.queue import IngestQueue

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


# ---------------------------------------------------------------------------
# Application lifespan — startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Run on startup: build the shared clients, log config summary.
    Run on shutdown: close the queue client and the connection pool.
    """
    settings = get_settings()
    logger.info(
        "Starting Knowledge Assistant | env=%s assistant_enabled=%s queue_enabled=%s",
        settings.app_env, settings.assistant_enabled, settings.queue_enabled,
    )

    app.state.object_store = S3ObjectStore.from_settings(settings)
    app.state.embeddings = EmbeddingClient.from_settings(settings)
    app.state.completion = (
        CompletionClient(build_chat_model(settings)) if settings.assistant_enabled else None
    )
    app.state.ingest_queue = IngestQueue.from_settings(settings)

    if not settings.assistant_enabled:
        logger.warning("OPENAI_API_KEY not set: assistant runs in degraded mode")
    if not settings.queue_enabled:
        logger.warning("CELERY_BROKER_URL not set: document ingestion will not be enqueued")

    logger.info("Auth issuer: %s", settings.auth_issuer)
    logger.info("S3 bucket: %s", settings.s3_bucket)

    yield

    logger.info("Shutting down Knowledge Assistant")
    await app.state.ingest_queue.close()
    from app.db.session import engine
    await engine.dispose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Company Knowledge Assistant",
        description=(
            "Multi-tenant document ingestion and retrieval-augmented answers "
            "grounded in each company's own documents, with citations."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order — last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    allowed_origins = ["*"] if settings.app_env == "development" else []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    if settings.allowed_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # ----------------------------------------------------------------
    # Request ID + logging middleware
    # ----------------------------------------------------------------

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers — uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(
                "Request failed | path=%s code=%s error=%s",
                request.url.path, exc.error_code, exc.message,
            )
        body = ErrorResponse(
            error_code=exc.error_code,
            message=exc.message,
            details=[
                ErrorDetail(field=key, message=str(value), code=exc.error_code)
                for key, value in exc.details.items()
            ],
            request_id=request.headers.get("X-Request-ID"),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to structured ErrorResponse."""
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
            request_id=request.headers.get("X-Request-ID"),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        body = ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(assistant_router, prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (no auth — used by load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {
            "status": "ok",
            "service": "knowledge-assistant-api",
            "assistant_enabled": settings.assistant_enabled,
            "queue_enabled": settings.queue_enabled,
        }

    @app.get(
        "/health/ready",
        tags=["Operations"],
        summary="Readiness probe (k8s alias)",
        description="Alias for /ready — used by Kubernetes readinessProbe.",
    )
    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="Returns 200 only if the database is reachable.",
    )
    async def readiness() -> JSONResponse:
        db_status = await check_db_health()
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=_settings.app_env == "development",
        log_level="debug" if _settings.debug else "info",
        access_log=True,
    )
