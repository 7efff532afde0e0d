"""Keyword ranking and its fusion with semantic matches."""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Sequence, Tuple

from rank_bm25 import BM25Okapi

from ragqueue.models.entities import SimilarityMatch

_TOKEN_RE = re.compile(r"\w+")

# Similarity reported for chunks found only by keyword, relative to their keyword score.
KEYWORD_ONLY_SIMILARITY = 0.5


def bm25_rank(query: str, documents: Sequence[Tuple[str, str]]) -> list[Tuple[str, float]]:
    """Rank ``(id, text)`` pairs by BM25, best first.

    Documents sharing no scoring term with the query are left out.
    """
    query_tokens = _tokenize(query)
    if not documents or not query_tokens:
        return []
    corpus_tokens = [_tokenize(text) for _, text in documents]
    if not any(corpus_tokens):
        return []
    scores = BM25Okapi(corpus_tokens).get_scores(query_tokens)
    ranked = [(doc_id, float(score)) for (doc_id, _), score in zip(documents, scores) if score > 0]
    ranked.sort(key=lambda item: item[1], reverse=True)
    return ranked


def merge_hybrid(
    semantic: Sequence[SimilarityMatch],
    keyword: Sequence[SimilarityMatch],
    keyword_weight: float,
    limit: int,
) -> list[SimilarityMatch]:
    """Blend a semantic and a keyword ranking into ``limit`` matches.

    A keyword hit at rank ``i`` of ``n`` scores ``1 - i / n``. The hybrid
    score is ``similarity * (1 - w) + keyword * w``, with a missing side
    counting as zero. Chunks found only by keyword report half their keyword
    score as similarity.
    """
    merged: dict[str, SimilarityMatch] = {}
    for match in semantic:
        merged[match.id] = replace(match, hybrid_score=match.similarity * (1 - keyword_weight))
    for rank, match in enumerate(keyword):
        keyword_score = 1 - rank / len(keyword)
        existing = merged.get(match.id)
        if existing is not None:
            existing.hybrid_score = (existing.hybrid_score or 0.0) + keyword_score * keyword_weight
        else:
            merged[match.id] = replace(
                match,
                similarity=keyword_score * KEYWORD_ONLY_SIMILARITY,
                hybrid_score=keyword_score * keyword_weight,
            )
    ranked = sorted(merged.values(), key=lambda item: item.hybrid_score or 0.0, reverse=True)
    return ranked[:limit]


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


__all__ = ["bm25_rank", "merge_hybrid"]
