"""
Document Processing Package
════════════════════════════

The stateless steps of the ingestion pipeline:

  Text Extraction → Paragraph Chunking → Embedding

Modules
───────
  extractor.py  Extension-based text extraction (.txt / .md / .markdown)
  chunking.py   Paragraph-packing chunker with word overlap
  embeddings.py Batch embedding client (OpenAI) with ordered results

Persistence of chunks and document status lives in
app.repositories.documents; orchestration in app.services.ingestion.
"""

from app.processing.chunking import Chunk, chunk_text, estimate_token_count
from app.processing.embeddings import EmbeddingClient
from app.processing.extractor import ExtractionResult, extract_text

__all__ = [
    "Chunk",
    "chunk_text",
    "estimate_token_count",
    "EmbeddingClient",
    "ExtractionResult",
    "extract_text",
]
