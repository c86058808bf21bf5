"""
Embedding Client  —  Order-Preserving Batch Embeddings
══════════════════════════════════════════════════════

One OpenAI embeddings call per batch of texts.  The response is validated
before use and reordered by the provider-reported `index`, so
output[i] is always the vector for texts[i] no matter what order the
provider returns items in.

Failure semantics:
  • Non-2xx / connection failure  → ProviderError("openai", ...) carrying
    the HTTP status and response body.  Transient; the ingestion queue's
    retry/backoff is the recovery path, so the SDK's own retries are off.
  • Malformed response (missing index/embedding, wrong item count,
    duplicate or out-of-range indexes) → ProviderError.  Never guessed at.

Model:
  text-embedding-3-small  → 1536 dims (default, matches the pgvector column)
"""

from __future__ import annotations

import logging
import time
from typing import Sequence

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict

from app.core.config import Settings
from app.core.errors import ProviderError
from app.schemas.results import Rejected, parse_model

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


# ---------------------------------------------------------------------------
# Response shape
# ---------------------------------------------------------------------------

class _EmbeddingItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    index:     int
    embedding: list[float]


class _EmbeddingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    data: list[_EmbeddingItem]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class EmbeddingClient:
    """
    Stateless wrapper over AsyncOpenAI.embeddings.

    Usage:
        client  = EmbeddingClient.from_settings(get_settings())
        vectors = await client.embed(["first chunk", "second chunk"])
    """

    def __init__(
        self,
        client: AsyncOpenAI | None,
        model: str = DEFAULT_EMBEDDING_MODEL,
    ) -> None:
        self._client = client
        self._model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingClient":
        client = (
            AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0)
            if settings.openai_api_key
            else None
        )
        return cls(client=client, model=settings.embedding_model)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        if self._client is None:
            raise ProviderError("openai", "Missing OPENAI_API_KEY")

        t0 = time.monotonic()
        try:
            response = await self._client.embeddings.create(
                model=self._model,
                input=list(texts),
            )
        except openai.APIStatusError as exc:
            body = exc.response.text
            raise ProviderError(
                "openai",
                f"OpenAI embeddings error {exc.status_code}: {body}",
                status=exc.status_code,
                body=body,
            ) from exc
        except openai.APIError as exc:
            raise ProviderError("openai", f"OpenAI embeddings error: {exc}") from exc

        vectors = self._ordered_vectors(response, expected=len(texts))

        logger.info(
            "Embeddings ok | model=%s inputs=%d api_ms=%.0f",
            self._model, len(texts), (time.monotonic() - t0) * 1000,
        )
        return vectors

    @staticmethod
    def _ordered_vectors(response: object, expected: int) -> list[list[float]]:
        parsed = parse_model(_EmbeddingsResponse, response, from_attributes=True)
        if isinstance(parsed, Rejected):
            raise ProviderError(
                "openai",
                f"OpenAI embeddings response invalid: {parsed.summary()}",
            )

        items = sorted(parsed.value.data, key=lambda item: item.index)
        if [item.index for item in items] != list(range(expected)):
            raise ProviderError(
                "openai",
                f"OpenAI embeddings response has indexes "
                f"{[item.index for item in items]} for {expected} inputs",
            )
        return [item.embedding for item in items]
