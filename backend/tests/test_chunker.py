"""Tests for chunker."""

import pytest

from ragqueue.ingest.chunker import chunk_stats, chunk_text
from ragqueue.ingest.types import ChunkOptions


def _assert_well_formed(text: str, chunks, options: ChunkOptions) -> None:
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    for chunk in chunks:
        assert chunk.text == text[chunk.start_char : chunk.end_char]
        assert len(chunk.text) <= options.chunk_size + options.overlap


def _assert_covers(text: str, chunks) -> None:
    assert not text[: chunks[0].start_char].strip()
    assert not text[chunks[-1].end_char :].strip()
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_char >= previous.start_char
        assert not text[previous.end_char : current.start_char].strip(), "gap must be whitespace only"


def test_short_paragraphs_overlap_tail_of_previous_chunk() -> None:
    text = "Para one.\n\nPara two.\n\nPara three."
    options = ChunkOptions(chunk_size=12, overlap=2, min_chunk_size=1)
    chunks = chunk_text(text, options)
    assert len(chunks) >= 2
    assert all(len(chunk.text) <= 14 for chunk in chunks)
    first, second = chunks[0], chunks[1]
    assert first.text == "Para one."
    assert second.text.startswith(first.text[-2:])
    assert second.start_char == first.end_char - 2


def test_paragraph_mode_covers_text_within_bound() -> None:
    paragraphs = [("Sentence number %d is here. " % i) * (i % 4 + 1) for i in range(12)]
    text = "\n\n".join(p.strip() for p in paragraphs)
    options = ChunkOptions(chunk_size=120, overlap=30, min_chunk_size=1)
    chunks = chunk_text(text, options)
    assert len(chunks) > 1
    _assert_well_formed(text, chunks, options)
    _assert_covers(text, chunks)


def test_paragraphs_are_merged_until_budget() -> None:
    text = "Alpha.\n\nBeta.\n\nGamma."
    chunks = chunk_text(text, ChunkOptions(chunk_size=100, overlap=10, min_chunk_size=1))
    assert len(chunks) == 1
    assert chunks[0].text == text


def test_long_paragraph_is_split_with_window() -> None:
    text = "word " * 100
    options = ChunkOptions(chunk_size=100, overlap=20, min_chunk_size=1)
    chunks = chunk_text(text, options)
    assert len(chunks) > 3
    _assert_well_formed(text, chunks, options)
    _assert_covers(text, chunks)


def test_sliding_window_cuts_at_sentence_end() -> None:
    text = "Alpha beta gamma. " * 20
    options = ChunkOptions(chunk_size=100, overlap=20, preserve_paragraphs=False, min_chunk_size=1)
    chunks = chunk_text(text, options)
    assert len(chunks) > 1
    _assert_well_formed(text, chunks, options)
    assert all(chunk.text.endswith(".") for chunk in chunks)
    assert chunks[1].start_char < chunks[0].end_char


def test_sliding_window_without_terminator_uses_full_window() -> None:
    text = "x" * 250
    options = ChunkOptions(chunk_size=100, overlap=10, preserve_paragraphs=False, min_chunk_size=1)
    chunks = chunk_text(text, options)
    assert [(c.start_char, c.end_char) for c in chunks] == [(0, 100), (90, 190), (180, 250)]


def test_small_trailing_fragment_is_discarded() -> None:
    text = "A" * 50 + "\n\n" + "tail"
    chunks = chunk_text(text, ChunkOptions(chunk_size=50, overlap=0, min_chunk_size=10))
    assert len(chunks) == 1
    assert chunks[0].index == 0
    assert chunks[0].text == "A" * 50


def test_empty_text_yields_no_chunks() -> None:
    assert chunk_text("") == []
    assert chunk_text("   \n\n  ") == []


def test_options_are_validated() -> None:
    with pytest.raises(ValueError):
        ChunkOptions(chunk_size=100, overlap=100)
    with pytest.raises(ValueError):
        ChunkOptions(chunk_size=0)


def test_chunk_stats(sample_text: str) -> None:
    chunks = chunk_text(sample_text, ChunkOptions(chunk_size=20, overlap=0, min_chunk_size=1))
    stats = chunk_stats(chunks)
    assert stats["count"] == len(chunks)
    assert stats["max_length"] <= 20
    assert stats["total_length"] == sum(len(chunk.text) for chunk in chunks)
    assert chunk_stats([])["count"] == 0
