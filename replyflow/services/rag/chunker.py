"""Paragraph-first text chunker with sentence-boundary splitting.

Paragraphs are packed into chunks up to ``max_chars``; a paragraph that
is longer than the budget on its own is split at sentence boundaries.
The output depends only on the input text, so re-indexing unchanged
content reproduces the same chunk boundaries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from replyflow.config import settings


@dataclass
class TextChunk:
    text: str
    chunk_index: int


_PARAGRAPH_RE = re.compile(r"\n\s*\n")
# Simple sentence splitter: handles ., !, ? followed by whitespace
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def split_text(text: str, max_chars: int | None = None) -> list[str]:
    """Split text into chunk strings of at most ~max_chars characters."""
    if not text or not text.strip():
        return []
    max_chars = max_chars or settings.rag_chunk_max_chars

    chunks: list[str] = []
    current = ""

    def flush() -> None:
        nonlocal current
        if current.strip():
            chunks.append(current.strip())
        current = ""

    for paragraph in _PARAGRAPH_RE.split(text):
        paragraph = paragraph.strip()
        if not paragraph:
            continue

        if current and len(current) + len(paragraph) > max_chars:
            flush()

        if len(paragraph) > max_chars:
            for sentence in _SENTENCE_RE.split(paragraph):
                if current and len(current) + len(sentence) > max_chars:
                    flush()
                current += sentence + " "
        else:
            current += paragraph + "\n\n"

    flush()
    return chunks


def chunk_text(text: str, max_chars: int | None = None) -> list[TextChunk]:
    return [TextChunk(text=t, chunk_index=i) for i, t in enumerate(split_text(text, max_chars))]
