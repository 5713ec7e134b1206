"""
Sentence-aware text chunking for model input.

Only the first `max_chunks` chunks of a document are ever sent to the
model. This bounds cost and latency and deliberately ignores the tail
of long filings.
"""

from __future__ import annotations

import re

DEFAULT_MAX_CHUNK_SIZE = 15000

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+")


def chunk_text_for_ai(text: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> list[str]:
    """Split `text` into chunks of at most `max_chunk_size` characters.

    Sentences are packed greedily as "<sentence>. " pieces. A sentence
    longer than the limit is not split further and becomes its own chunk.
    """
    if len(text) <= max_chunk_size:
        return [text]

    sentences = [s.strip() for s in _SENTENCE_BOUNDARY.split(text)]
    chunks: list[str] = []
    current = ""

    for sentence in sentences:
        if not sentence:
            continue
        piece = sentence + ". "
        if current and len(current) + len(piece) > max_chunk_size:
            chunks.append(current.strip())
            current = piece
        else:
            current += piece

    if current.strip():
        chunks.append(current.strip())

    return chunks


def model_input(text: str, chunk_size: int = 12000, max_chunks: int = 3) -> str:
    """First `max_chunks` chunks of `text`, separated by a blank line."""
    return "\n\n".join(chunk_text_for_ai(text, chunk_size)[:max_chunks])
