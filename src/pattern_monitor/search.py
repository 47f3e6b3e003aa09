"""
pattern_monitor/search.py - Two-stage similarity search

Stage 1 (candidate generation):
    PostingIndex.candidates shortlists ``max_candidates`` ids by index
    overlap, without touching the rest of the corpus.

Stage 2 (exact ranking):
    Exact cosine between the query and each candidate's stored vector,
    filtered by ``min_similarity``, sorted by similarity descending then id
    ascending, truncated to ``top_k``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .index import PostingIndex
from .operators import similarity
from .types import SearchConfig
from .vectors import SparseVector

logger = logging.getLogger(__name__)

VectorResolver = Callable[[str], "SparseVector | None"]


@dataclass(frozen=True)
class SearchHit:
    """One ranked result."""

    vector_id: str
    similarity: float


class TwoStageSearch:
    """Approximate-then-exact retrieval over a PostingIndex.

    Args:
        index: Posting index used for the shortlist
        config: Default top_k / min_similarity / shortlist sizing
        resolve: id -> vector lookup for stage 2 (default: the index registry)
    """

    def __init__(
        self,
        index: PostingIndex,
        config: SearchConfig | None = None,
        resolve: VectorResolver | None = None,
    ):
        self.index = index
        self.config = config or SearchConfig()
        self.resolve = resolve or index.get

    def search(
        self,
        query: SparseVector,
        top_k: int | None = None,
        min_similarity: float | None = None,
        max_candidates: int | None = None,
    ) -> list[SearchHit]:
        """Rank stored vectors against a query.

        Args:
            query: Query vector
            top_k: Results to return (default: config)
            min_similarity: Drop results below this cosine (default: config)
            max_candidates: Stage-1 shortlist size; must exceed top_k
                (default: top_k x candidate_multiplier)

        Returns:
            At most ``top_k`` hits; an empty list when nothing qualifies
        """
        top_k = self.config.top_k if top_k is None else top_k
        min_similarity = self.config.min_similarity if min_similarity is None else min_similarity
        if top_k <= 0:
            raise ValueError(f"top_k must be positive, got {top_k}")
        if max_candidates is None:
            max_candidates = top_k * self.config.candidate_multiplier
        if max_candidates <= top_k:
            raise ValueError(
                f"max_candidates ({max_candidates}) must exceed top_k ({top_k})"
            )

        shortlist = self.index.candidates(query, max_candidates, self.config.scoring)

        hits = []
        for vector_id in shortlist:
            stored = self.resolve(vector_id)
            if stored is None:
                continue
            sim = similarity(query, stored)
            if sim >= min_similarity:
                hits.append(SearchHit(vector_id, sim))

        hits.sort(key=lambda h: (-h.similarity, h.vector_id))
        logger.debug(
            f"search: {len(shortlist)} candidate(s), {len(hits)} above {min_similarity}, "
            f"returning {min(len(hits), top_k)}"
        )
        return hits[:top_k]


def search(
    index: PostingIndex,
    query: SparseVector,
    top_k: int,
    min_similarity: float,
    max_candidates: int | None = None,
) -> list[SearchHit]:
    """Functional form of TwoStageSearch.search with default sizing."""
    return TwoStageSearch(index).search(query, top_k, min_similarity, max_candidates)
