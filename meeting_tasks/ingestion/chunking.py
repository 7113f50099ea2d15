"""Split oversized transcripts into bounded chunks for extraction."""

from __future__ import annotations

import re

# Roughly 25k tokens for current GPT-4 / Claude class models.
MAX_CHUNK_LENGTH = 100_000

_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")


def _join(current: str, piece: str) -> str:
    return f"{current} {piece}" if current else piece


def split_into_chunks(text: str, max_length: int = MAX_CHUNK_LENGTH) -> list[str]:
    """Greedily pack sentences into chunks of at most *max_length* characters.

    A sentence longer than *max_length* is packed word by word instead.  A
    single word longer than *max_length* becomes its own (oversized) chunk.
    Joining the chunks with whitespace reproduces *text* up to whitespace.

    Args:
        text: Normalized transcript text.
        max_length: Maximum characters per chunk.

    Returns:
        List of chunk strings (empty for blank input).
    """
    if max_length <= 0:
        raise ValueError(f"max_length must be positive, got {max_length}")

    if not text.strip():
        return []
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    current = ""

    for sentence in _SENTENCE_BOUNDARY_RE.split(text.strip()):
        if not sentence:
            continue
        candidate = _join(current, sentence)
        if len(candidate) <= max_length:
            current = candidate
            continue

        if current:
            chunks.append(current)
            current = ""

        if len(sentence) <= max_length:
            current = sentence
            continue

        # Sentence alone is too long: fall back to word boundaries.
        for word in sentence.split():
            candidate = _join(current, word)
            if len(candidate) <= max_length:
                current = candidate
                continue
            if current:
                chunks.append(current)
            current = word

    if current:
        chunks.append(current)

    return chunks
