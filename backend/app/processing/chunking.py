"""
Paragraph-Aware Chunker  —  Token-Budgeted Text Segmentation
═════════════════════════════════════════════════════════════

Splits extracted document text into an ordered, 0-indexed sequence of
chunks sized for embedding.

Algorithm
─────────
  1. Normalise line endings (\\r\\n, \\r → \\n) and trim.  Empty → [].
  2. Split into paragraphs at blank lines; drop empty paragraphs.
  3. Greedily pack whole paragraphs into a buffer while the buffer's
     word count stays ≤ max_tokens.
  4. When the next paragraph does not fit: flush the buffer as a chunk,
     then seed the new buffer with the trailing overlap_tokens words of
     the flushed buffer, followed by the paragraph.
  5. A paragraph that alone exceeds max_tokens: flush the buffer, then
     slide a window of max_tokens words with stride
     (max_tokens − overlap_tokens) across it.  The final partial window
     is emitted too.
  6. Flush whatever remains.

Token counting
──────────────
  "Tokens" are whitespace-separated words.  This keeps the chunker free of
  a tokenizer dependency; the budget of 400 words sits well below the
  8191-token input limit of text-embedding-3-small.

  token_count is always recomputed from the final chunk content.

Overlap seeding is capped at (max_tokens − paragraph_words) so a seeded
buffer can never exceed the budget; the only chunks that can reach exactly
max_tokens are full windows in step 5.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from app.core.errors import ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

DEFAULT_MAX_TOKENS     = 400
DEFAULT_OVERLAP_TOKENS = 50

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
_WHITESPACE_RE      = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Chunk:
    index:       int    # 0-based position in the returned list
    content:     str
    token_count: int    # whitespace word count of content


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def estimate_token_count(text: str) -> int:
    """Whitespace-separated word count; 0 for blank text."""
    trimmed = text.strip()
    if not trimmed:
        return 0
    return len(_WHITESPACE_RE.split(trimmed))


def _words(text: str) -> list[str]:
    trimmed = text.strip()
    return _WHITESPACE_RE.split(trimmed) if trimmed else []


def _validate_config(max_tokens: int, overlap_tokens: int) -> None:
    if max_tokens <= 0:
        raise ValidationError("max_tokens must be > 0", {"max_tokens": max_tokens})
    if overlap_tokens < 0:
        raise ValidationError("overlap_tokens must be >= 0", {"overlap_tokens": overlap_tokens})
    if overlap_tokens >= max_tokens:
        raise ValidationError(
            "overlap_tokens must be < max_tokens",
            {"max_tokens": max_tokens, "overlap_tokens": overlap_tokens},
        )


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

def chunk_text(
    text: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> list[Chunk]:
    """
    Split text into paragraph-aware, overlapping chunks.

    Raises:
        ValidationError: max_tokens <= 0, overlap_tokens < 0 or
                         overlap_tokens >= max_tokens.  Raised before any
                         text is processed.
    """
    _validate_config(max_tokens, overlap_tokens)

    normalized = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    if not normalized:
        return []

    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK_RE.split(normalized)]
    paragraphs = [p for p in paragraphs if p]

    chunks: list[Chunk] = []
    buffer: list[str] = []
    buffer_tokens = 0

    def emit(content: str) -> None:
        content = content.strip()
        if not content:
            return
        chunks.append(
            Chunk(
                index=len(chunks),
                content=content,
                token_count=estimate_token_count(content),
            )
        )

    stride = max_tokens - overlap_tokens

    for para in paragraphs:
        para_tokens = estimate_token_count(para)

        # Oversized paragraph → word windows
        if para_tokens > max_tokens:
            emit("\n\n".join(buffer))
            buffer, buffer_tokens = [], 0

            words = _words(para)
            start = 0
            while start < len(words):
                end = min(start + max_tokens, len(words))
                emit(" ".join(words[start:end]))
                if end >= len(words):
                    break
                start += stride
            continue

        if buffer_tokens + para_tokens <= max_tokens:
            buffer.append(para)
            buffer_tokens += para_tokens
            continue

        # Overflow → flush, seed with trailing overlap words
        flushed = "\n\n".join(buffer)
        emit(flushed)

        seed_size = min(overlap_tokens, max_tokens - para_tokens)
        seed_words = _words(flushed)[-seed_size:] if seed_size > 0 else []
        buffer = [" ".join(seed_words), para] if seed_words else [para]
        buffer_tokens = estimate_token_count("\n\n".join(buffer))

    emit("\n\n".join(buffer))

    logger.debug(
        "Chunked text | paragraphs=%d chunks=%d max_tokens=%d overlap=%d",
        len(paragraphs), len(chunks), max_tokens, overlap_tokens,
    )
    return chunks
