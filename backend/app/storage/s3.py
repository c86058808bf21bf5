"""
S3 Object Store — Tenant-Partitioned Document Storage

Key layout:
    s3://<BUCKET>/<company_id>/<document_id>/<sanitized_filename>

The prefix is always built server-side from the authenticated company id and
a server-generated document id (build_object_path); the client only
influences the final path segment, and only after sanitize_filename().

Error mapping:
    NoSuchKey / 404      → NotFoundError   (terminal for an ingestion job)
    any other ClientError → ProviderError   (transient, retried by the queue)
"""

from __future__ import annotations

import logging
import re
from uuid import UUID

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings
from app.core.errors import NotFoundError, ProviderError

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_RE = re.compile(r"[^\w.-]+")


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------

def sanitize_filename(filename: str) -> str:
    """Replace every run of characters outside [A-Za-z0-9_.-] with "_"."""
    return _UNSAFE_FILENAME_RE.sub("_", filename) if filename else "_"


def build_object_path(company_id: UUID, document_id: UUID, filename: str) -> str:
    return f"{company_id}/{document_id}/{sanitize_filename(filename)}"


# ---------------------------------------------------------------------------
# Object store
# ---------------------------------------------------------------------------

class S3ObjectStore:
    """
    Async get/put over aioboto3.

    One instance per process; aioboto3 sessions are cheap and every call
    opens its own scoped client.
    """

    def __init__(
        self,
        region: str,
        endpoint_url: str = "",
        kms_key_arn: str = "",
        session: aioboto3.Session | None = None,
    ) -> None:
        self._region = region
        self._endpoint_url = endpoint_url or None
        self._kms_key_arn = kms_key_arn
        self._session = session or aioboto3.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        return cls(
            region=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
            kms_key_arn=settings.s3_kms_key_arn,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url,
        )

    def _sse_params(self) -> dict:
        if not self._kms_key_arn:
            return {}
        return {
            "ServerSideEncryption": "aws:kms",
            "SSEKMSKeyId": self._kms_key_arn,
        }

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def put(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=bucket,
                    Key=path,
                    Body=data,
                    ContentType=content_type,
                    **self._sse_params(),
                )
        except (ClientError, BotoCoreError) as exc:
            raise _to_provider_error("put", bucket, path, exc) from exc

        logger.info("S3 upload ok | bucket=%s key=%s size=%d", bucket, path, len(data))

    async def get(self, bucket: str, path: str) -> bytes:
        try:
            async with self._client() as s3:
                resp = await s3.get_object(Bucket=bucket, Key=path)
                data = await resp["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise NotFoundError(
                    f"Object not found: {bucket}/{path}",
                    {"bucket": bucket, "path": path},
                ) from exc
            raise _to_provider_error("get", bucket, path, exc) from exc
        except BotoCoreError as exc:
            raise _to_provider_error("get", bucket, path, exc) from exc

        logger.debug("S3 download ok | bucket=%s key=%s size=%d", bucket, path, len(data))
        return data


def _to_provider_error(
    op: str,
    bucket: str,
    path: str,
    exc: Exception,
) -> ProviderError:
    status = None
    if isinstance(exc, ClientError):
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    logger.error("S3 %s failed | bucket=%s key=%s error=%s", op, bucket, path, exc)
    return ProviderError("s3", f"S3 {op} failed for {bucket}/{path}: {exc}", status=status)
