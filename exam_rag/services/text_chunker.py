"""Split extracted document text into overlapping, size-bounded fragments."""

import re
from itertools import islice
from typing import Iterator, NamedTuple, Optional

# Fragments at or below this many characters (after trimming) are discarded.
MIN_FRAGMENT_LENGTH = 80

_TRAILING_WS_RE = re.compile(r"[ \t]+\n")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


class ChunkSpan(NamedTuple):
    """A fragment and the ``[start, end)`` range of cleaned text it came from."""
    start: int
    end: int
    text: str


def clean_text(text: str) -> str:
    """Normalize extracted PDF text before chunking.

    Drops carriage returns, strips spaces/tabs at line ends and collapses
    runs of blank lines to a single blank line.
    """
    cleaned = text.replace("\r", "")
    cleaned = _TRAILING_WS_RE.sub("\n", cleaned)
    cleaned = _BLANK_LINES_RE.sub("\n\n", cleaned)
    return cleaned.strip()


def _iter_spans(clean: str, chunk_size: int, overlap: int) -> Iterator[ChunkSpan]:
    length = len(clean)
    start = 0
    while start < length:
        end = min(length, start + chunk_size)
        fragment = clean[start:end].strip()
        if len(fragment) > MIN_FRAGMENT_LENGTH:
            yield ChunkSpan(start, end, fragment)
        if end >= length:
            break
        next_start = max(0, end - overlap)
        # overlap >= chunk_size would otherwise restart at the same offset
        start = next_start if next_start > start else end


def iter_chunk_spans(
    text: str,
    chunk_size: int,
    overlap: int,
    max_chunks: Optional[int] = None,
) -> Iterator[ChunkSpan]:
    """Lazily yield fragments of ``text`` with their offsets in the cleaned text.

    Args:
        text: Raw extracted text; it is cleaned with :func:`clean_text` first.
        chunk_size: Maximum characters per fragment.
        overlap: Characters shared between consecutive fragments.
        max_chunks: Cap on emitted fragments; extra fragments are dropped whole.

    Returns:
        A fresh generator on every call, so the sequence can be restarted.

    Raises:
        ValueError: If chunk_size is not positive or overlap is negative.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise ValueError(f"overlap must not be negative, got {overlap}")
    if max_chunks is not None and max_chunks < 0:
        raise ValueError(f"max_chunks must not be negative, got {max_chunks}")

    spans = _iter_spans(clean_text(text), chunk_size, overlap)
    if max_chunks is None:
        return spans
    return islice(spans, max_chunks)


def chunk_text(
    text: str,
    chunk_size: int,
    overlap: int,
    max_chunks: Optional[int] = None,
) -> Iterator[str]:
    """Like :func:`iter_chunk_spans` but yields only the fragment texts."""
    return (span.text for span in iter_chunk_spans(text, chunk_size, overlap, max_chunks))
