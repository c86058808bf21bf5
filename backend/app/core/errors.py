"""
Application error taxonomy.

Every error the pipeline raises on purpose derives from AppError so the API
layer can map it to the ErrorResponse envelope with a single handler, and the
worker can tell terminal failures (never retried) from transient ones.

    AppError
    ├── ValidationError            400  terminal
    │   ├── UnsupportedFileTypeError 415  terminal
    │   ├── PayloadTooLargeError     413
    │   └── EmptyDocumentError       422  terminal
    ├── NotFoundError              404
    ├── PersistenceError           500  transient
    └── ProviderError              502  transient
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    error_code: str = "INTERNAL_ERROR"
    status_code: int = 500
    retryable: bool = True

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AppError):
    error_code = "VALIDATION_ERROR"
    status_code = 400
    retryable = False


class UnsupportedFileTypeError(ValidationError):
    error_code = "UNSUPPORTED_FILE_TYPE"
    status_code = 415

    def __init__(self, extension: str) -> None:
        super().__init__(
            f"UNSUPPORTED_FILE_TYPE: {extension}",
            {"extension": extension},
        )
        self.extension = extension


class PayloadTooLargeError(ValidationError):
    error_code = "FILE_TOO_LARGE"
    status_code = 413


class EmptyDocumentError(ValidationError):
    error_code = "EMPTY_DOCUMENT"
    status_code = 422


class NotFoundError(AppError):
    error_code = "NOT_FOUND"
    status_code = 404
    retryable = False


class PersistenceError(AppError):
    error_code = "PERSISTENCE_ERROR"
    status_code = 500


class ProviderError(AppError):
    """A remote dependency (object store, embeddings, LLM, database) failed."""

    error_code = "PROVIDER_ERROR"
    status_code = 502

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(
            message,
            {"provider": provider, "status": status},
        )
        self.provider = provider
        self.status = status
        self.body = body
