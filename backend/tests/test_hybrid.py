"""Tests for keyword ranking and hybrid fusion."""

from __future__ import annotations

import pytest

from ragqueue.models.entities import SimilarityMatch
from ragqueue.retrieval.hybrid import bm25_rank, merge_hybrid

CORPUS = [
    ("c1", "Workers claim jobs in priority order."),
    ("c2", "A heartbeat keeps a long running job from being reaped."),
    ("c3", "Cosine similarity compares two vectors."),
    ("c4", "Chunks overlap so sentences are not cut in half."),
    ("c5", "The reaper returns stale jobs to the queue."),
]


def _match(match_id: str, similarity: float) -> SimilarityMatch:
    return SimilarityMatch(id=match_id, source_document_id="doc", chunk_text=match_id, chunk_index=0, similarity=similarity)


def test_bm25_rank_orders_by_score_and_drops_misses() -> None:
    ranked = bm25_rank("heartbeat job", CORPUS)
    assert ranked[0][0] == "c2"
    assert all(score > 0 for _, score in ranked)
    assert "c3" not in [doc_id for doc_id, _ in ranked]


def test_bm25_rank_is_case_insensitive() -> None:
    assert [doc_id for doc_id, _ in bm25_rank("COSINE", CORPUS)] == ["c3"]


def test_bm25_rank_handles_empty_input() -> None:
    assert bm25_rank("anything", []) == []
    assert bm25_rank("   ", CORPUS) == []
    assert bm25_rank("word", [("e1", ""), ("e2", "...")]) == []


def test_merge_hybrid_blends_both_rankings() -> None:
    semantic = [_match("a", 0.9), _match("b", 0.6)]
    keyword = [_match("b", 7.0), _match("c", 3.0)]

    merged = merge_hybrid(semantic, keyword, keyword_weight=0.3, limit=3)

    assert [match.id for match in merged] == ["b", "a", "c"]
    assert merged[0].hybrid_score == pytest.approx(0.6 * 0.7 + 1.0 * 0.3)
    assert merged[0].similarity == pytest.approx(0.6)
    assert merged[1].hybrid_score == pytest.approx(0.9 * 0.7)
    assert merged[2].hybrid_score == pytest.approx(0.5 * 0.3)
    assert merged[2].similarity == pytest.approx(0.25)


def test_merge_hybrid_respects_limit_and_weight_extremes() -> None:
    semantic = [_match("a", 0.9), _match("b", 0.8)]
    keyword = [_match("b", 5.0), _match("a", 1.0)]

    assert [match.id for match in merge_hybrid(semantic, keyword, 0.0, limit=1)] == ["a"]
    assert [match.id for match in merge_hybrid(semantic, keyword, 1.0, limit=2)] == ["b", "a"]
    assert merge_hybrid([], [], 0.3, limit=5) == []


def test_merge_hybrid_leaves_inputs_untouched() -> None:
    semantic = [_match("a", 0.9)]
    merge_hybrid(semantic, [_match("a", 2.0)], 0.3, limit=5)
    assert semantic[0].hybrid_score is None
