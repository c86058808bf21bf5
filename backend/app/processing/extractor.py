"""
Text Extraction
═══════════════

Maps an object's storage path + raw bytes to plain text.

Supported formats are selected by file extension (case-insensitive):

    .txt             → UTF-8 decode
    .md / .markdown  → UTF-8 decode (markup kept; it embeds fine)

Anything else raises UnsupportedFileTypeError naming the extension, or
"<none>" when the path has no extension.  The worker treats that as a
terminal failure for the document.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass

from app.core.errors import UnsupportedFileTypeError

logger = logging.getLogger(__name__)

_KIND_BY_EXTENSION: dict[str, str] = {
    ".txt":      "txt",
    ".md":       "md",
    ".markdown": "md",
}

SUPPORTED_EXTENSIONS = frozenset(_KIND_BY_EXTENSION)


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    kind: str   # "txt" | "md"


def get_extension(path: str) -> str:
    """Lower-cased extension including the dot; "" when absent."""
    return posixpath.splitext(path)[1].lower()


def extract_text(path: str, data: bytes) -> ExtractionResult:
    ext = get_extension(path)
    kind = _KIND_BY_EXTENSION.get(ext)
    if kind is None:
        raise UnsupportedFileTypeError(ext or "<none>")

    # invalid byte sequences become U+FFFD
    text = data.decode("utf-8", errors="replace")
    logger.debug("Extracted text | path=%s kind=%s chars=%d", path, kind, len(text))
    return ExtractionResult(text=text, kind=kind)
