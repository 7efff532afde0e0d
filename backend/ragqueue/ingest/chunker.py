"""Chunking utilities."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

from ragqueue.ingest.types import Chunk, ChunkOptions

_SEGMENT_RE = re.compile(r"\n\s*\n", re.MULTILINE)
_SENTENCE_END_RE = re.compile(r"[.!?](?=\s)")

# Sentence cuts are only taken from the tail of a window.
_SENTENCE_SEARCH_FRACTION = 0.7


@dataclass(slots=True)
class Segment:
    text: str
    start: int
    end: int


def chunk_text(text: str, options: ChunkOptions | None = None) -> list[Chunk]:
    """Split text into ordered, overlapping chunks.

    Offsets refer to ``text`` itself and every chunk's ``text`` equals
    ``text[start_char:end_char]``. No chunk is longer than
    ``chunk_size + overlap``.
    """
    opts = options or ChunkOptions()
    if not text.strip():
        return []
    if opts.preserve_paragraphs:
        spans = _paragraph_spans(text, opts)
    else:
        spans = _window_spans(text, 0, len(text), opts.chunk_size, opts.overlap)
    chunks: list[Chunk] = []
    for start, end in spans:
        if end - start < opts.min_chunk_size:
            continue
        chunks.append(Chunk(text=text[start:end], index=len(chunks), start_char=start, end_char=end))
    return chunks


def _paragraph_spans(text: str, opts: ChunkOptions) -> list[tuple[int, int]]:
    """Accumulate paragraphs into spans, flushing when the budget overflows."""
    limit = opts.chunk_size + opts.overlap
    spans: list[tuple[int, int]] = []
    buf_start: int | None = None
    buf_end = 0

    for segment in _iter_pieces(text, opts.chunk_size):
        if buf_start is None:
            buf_start, buf_end = segment.start, segment.end
            continue
        if segment.end - buf_start <= opts.chunk_size:
            buf_end = segment.end
            continue
        if buf_end - buf_start < opts.min_chunk_size and segment.end - buf_start <= limit:
            # Too small to stand alone; carry it into the next chunk.
            buf_end = segment.end
            continue
        spans.append((buf_start, buf_end))
        buf_start = _overlap_start(text, buf_start, buf_end, segment, opts.overlap, limit)
        buf_end = segment.end

    if buf_start is not None:
        spans.append((buf_start, buf_end))
    return spans


def _overlap_start(
    text: str,
    prev_start: int,
    prev_end: int,
    segment: Segment,
    overlap: int,
    limit: int,
) -> int:
    """Start of the next buffer: the flushed chunk's tail, bounded by ``limit``."""
    if overlap <= 0:
        return segment.start
    start = max(prev_end - overlap, prev_start, segment.end - limit)
    if start >= prev_end:
        return segment.start
    while start < segment.start and text[start].isspace():
        start += 1
    return start


def _iter_pieces(text: str, chunk_size: int) -> Iterator[Segment]:
    """Yield paragraphs, splitting any paragraph longer than ``chunk_size``."""
    for segment in _iter_segments(text):
        if segment.end - segment.start <= chunk_size:
            yield segment
            continue
        for start, end in _window_spans(text, segment.start, segment.end, chunk_size, 0):
            yield Segment(text=text[start:end], start=start, end=end)


def _iter_segments(text: str) -> Iterator[Segment]:
    last_index = 0
    for match in _SEGMENT_RE.finditer(text):
        segment = _trim_segment(text, last_index, match.start())
        if segment:
            yield segment
        last_index = match.end()
    if last_index < len(text):
        segment = _trim_segment(text, last_index, len(text))
        if segment:
            yield segment


def _trim_segment(text: str, start: int, end: int) -> Segment | None:
    seg_start = start
    seg_end = end
    while seg_start < seg_end and text[seg_start].isspace():
        seg_start += 1
    while seg_end > seg_start and text[seg_end - 1].isspace():
        seg_end -= 1
    if seg_start >= seg_end:
        return None
    return Segment(text=text[seg_start:seg_end], start=seg_start, end=seg_end)


def _window_spans(text: str, start: int, stop: int, size: int, overlap: int) -> list[tuple[int, int]]:
    """Slide a ``size`` window over ``text[start:stop]`` stepping by ``size - overlap``.

    Windows that stop short of ``stop`` are cut back to the last sentence
    terminator found in their final 30%.
    """
    spans: list[tuple[int, int]] = []
    pos = start
    while pos < stop:
        end = min(pos + size, stop)
        cut = end
        if end < stop:
            cut = _last_sentence_end(text, pos + math.ceil(size * _SENTENCE_SEARCH_FRACTION), end) or end
        trimmed = _trim_segment(text, pos, cut)
        if trimmed is not None:
            spans.append((trimmed.start, trimmed.end))
        if end >= stop:
            break
        pos = max(cut - overlap, pos + 1)
    return spans


def _last_sentence_end(text: str, search_from: int, end: int) -> int | None:
    """Index just past the last ``.``/``!``/``?`` followed by whitespace in ``[search_from, end)``."""
    if search_from >= end:
        return None
    found = None
    # Lookahead may inspect text[end]; that whitespace belongs to the next window.
    for match in _SENTENCE_END_RE.finditer(text, search_from, min(end + 1, len(text))):
        if match.start() < end:
            found = match.end()
    return found


def chunk_stats(chunks: Sequence[Chunk]) -> dict[str, Any]:
    """Summarise chunk lengths."""
    if not chunks:
        return {"count": 0, "avg_length": 0, "min_length": 0, "max_length": 0, "total_length": 0}
    lengths = [len(chunk.text) for chunk in chunks]
    return {
        "count": len(chunks),
        "avg_length": round(sum(lengths) / len(lengths)),
        "min_length": min(lengths),
        "max_length": max(lengths),
        "total_length": sum(lengths),
    }


__all__ = ["chunk_text", "chunk_stats"]
