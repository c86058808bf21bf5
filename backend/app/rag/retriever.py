"""
RAG Retriever — Question → Top-K Chunks

    question ──embed (single-item batch)──▶ vector ──match_chunks(vector, K)──▶ matches

Tenant and visibility isolation come from the session's RLS context: the
retriever can ONLY see chunks the calling user is allowed to read, because
match_chunks() runs inside that user's transaction.
"""

from __future__ import annotations

import logging

from app.processing.embeddings import EmbeddingClient
from app.repositories.documents import ChunkMatch, DocumentRepository

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 6


class RetrievalIndex:
    def __init__(
        self,
        embeddings: EmbeddingClient,
        documents: DocumentRepository,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._embeddings = embeddings
        self._documents = documents
        self.top_k = top_k

    async def retrieve(self, question: str) -> list[ChunkMatch]:
        vectors = await self._embeddings.embed([question])
        if not vectors:
            return []

        matches = await self._documents.match_chunks(vectors[0], self.top_k)
        logger.info(
            "Retrieval | top_k=%d matches=%d best=%.3f",
            self.top_k, len(matches), matches[0].similarity if matches else 0.0,
        )
        return matches
