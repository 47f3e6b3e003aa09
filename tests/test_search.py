"""
tests/test_search.py - Two-stage search
"""

import pytest

from pattern_monitor.index import PostingIndex
from pattern_monitor.operators import bundle
from pattern_monitor.search import SearchHit, TwoStageSearch, search
from pattern_monitor.types import SearchConfig
from pattern_monitor.vectors import seed_vector


@pytest.fixture
def corpus(space):
    """Twenty unrelated vectors plus two composites of doc_0."""
    index = PostingIndex(space.dimension)
    docs = {f"doc_{i:02d}": seed_vector(f"doc_{i}", space) for i in range(20)}
    docs["mix_0_1"] = bundle([docs["doc_00"], docs["doc_01"]], space)
    docs["mix_0_1_2"] = bundle([docs["doc_00"], docs["doc_01"], docs["doc_02"]], space)
    for vector_id, vector in docs.items():
        index.insert(vector_id, vector)
    return index, docs


# =============================================================================
# RANKING
# =============================================================================


class TestRanking:

    def test_exact_match_first(self, corpus):
        index, docs = corpus
        for vector_id in ("doc_05", "mix_0_1", "doc_19"):
            hits = search(index, docs[vector_id], top_k=3, min_similarity=0.0)
            assert hits[0] == SearchHit(vector_id, 1.0), f"{vector_id}: {hits}"

    def test_composites_rank_by_similarity(self, corpus):
        index, docs = corpus
        hits = search(index, docs["doc_00"], top_k=3, min_similarity=0.2)
        assert [h.vector_id for h in hits] == ["doc_00", "mix_0_1", "mix_0_1_2"]
        sims = [h.similarity for h in hits]
        assert sims == sorted(sims, reverse=True)

    def test_min_similarity_filters(self, corpus):
        index, docs = corpus
        hits = search(index, docs["doc_07"], top_k=5, min_similarity=0.5)
        assert [h.vector_id for h in hits] == ["doc_07"]

    def test_fewer_results_than_top_k(self, corpus):
        index, docs = corpus
        hits = search(index, docs["doc_00"], top_k=10, min_similarity=0.2)
        assert len(hits) == 3

    def test_empty_corpus(self, space, vec_a):
        assert search(PostingIndex(space.dimension), vec_a, top_k=5, min_similarity=0.0) == []

    def test_ties_broken_by_id(self, space, vec_a):
        index = PostingIndex(space.dimension)
        for vector_id in ("zeta", "alpha", "mid"):
            index.insert(vector_id, vec_a)
        hits = search(index, vec_a, top_k=3, min_similarity=0.0)
        assert [h.vector_id for h in hits] == ["alpha", "mid", "zeta"]


# =============================================================================
# PARAMETERS
# =============================================================================


class TestParameters:

    def test_top_k_must_be_positive(self, corpus):
        index, docs = corpus
        with pytest.raises(ValueError):
            search(index, docs["doc_00"], top_k=0, min_similarity=0.0)

    def test_max_candidates_must_exceed_top_k(self, corpus):
        index, docs = corpus
        with pytest.raises(ValueError, match="max_candidates"):
            search(index, docs["doc_00"], top_k=5, min_similarity=0.0, max_candidates=5)

    def test_config_defaults(self, corpus):
        index, docs = corpus
        searcher = TwoStageSearch(index, SearchConfig(top_k=2, min_similarity=0.2))
        hits = searcher.search(docs["doc_00"])
        assert [h.vector_id for h in hits] == ["doc_00", "mix_0_1"]

    def test_custom_resolver(self, corpus, space):
        index, docs = corpus
        replacement = seed_vector("elsewhere", space)
        searcher = TwoStageSearch(
            index,
            resolve=lambda vid: replacement if vid == "doc_03" else index.get(vid),
        )
        hits = searcher.search(docs["doc_03"], top_k=3, min_similarity=0.5)
        assert hits == []
