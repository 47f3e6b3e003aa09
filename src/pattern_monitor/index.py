"""
pattern_monitor/index.py - Inverted posting-list index over vector positions

Layout:
    An arena of D posting lists, one slot per dimension index. A slot stays
    None until the first vector with a non-zero at that position arrives;
    after that it is an insertion-ordered set of vector ids. Lists only
    grow: insertion appends, nothing is ever overwritten or removed.

Concurrency:
    Posting lists are guarded by a fixed pool of stripe locks (list i uses
    stripe i mod N). Appenders touching different stripes never contend and
    there is no index-wide lock on the insert path.

Re-inserting an id with a new vector leaves its old postings in place. The
overlap score is an upper-bound shortlist proxy, so stale postings can only
widen stage 1; stage 2 always ranks against the latest registered vector.
"""
from __future__ import annotations

import heapq
import logging
import threading
from collections import defaultdict
from typing import Literal

import numpy as np

from .errors import IndexUpdateError
from .vectors import SparseVector

logger = logging.getLogger(__name__)

Scoring = Literal["weight", "count"]


class PostingIndex:
    """Append-only inverted index from dimension index to vector ids.

    Example:
        index = PostingIndex(dimension=10000)
        index.insert("semantic:v1:event", vector)
        ids = index.candidates(query, max_candidates=50)
    """

    def __init__(self, dimension: int, stripes: int = 64):
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")
        if stripes <= 0:
            raise ValueError(f"stripes must be positive, got {stripes}")
        self.dimension = dimension
        self._postings: list[dict[str, None] | None] = [None] * dimension
        self._stripes = [threading.Lock() for _ in range(stripes)]
        self._vectors: dict[str, SparseVector] = {}
        self._registry_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def insert(self, vector_id: str, vector: SparseVector) -> None:
        """Register a vector and post its id under every non-zero index.

        Raises:
            IndexUpdateError: if the vector does not fit this index
        """
        if vector.dimension != self.dimension:
            raise IndexUpdateError(
                vector_id,
                f"dimension {vector.dimension} does not match index dimension {self.dimension}",
            )

        with self._registry_lock:
            self._vectors[vector_id] = vector

        positions = vector.indices.astype(np.int64)
        stripe_of = positions % len(self._stripes)
        for stripe in np.unique(stripe_of).tolist():
            with self._stripes[stripe]:
                for i in positions[stripe_of == stripe].tolist():
                    plist = self._postings[i]
                    if plist is None:
                        plist = self._postings[i] = {}
                    plist.setdefault(vector_id, None)

        logger.debug(f"indexed '{vector_id}' under {vector.nnz} posting list(s)")

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def candidates(
        self,
        query: SparseVector,
        max_candidates: int,
        scoring: Scoring = "weight",
    ) -> list[str]:
        """Shortlist ids by overlap with the query's non-zero indices.

        Args:
            query: Query vector
            max_candidates: Shortlist size
            scoring: "weight" sums |query weight| over shared indices,
                "count" counts shared indices

        Returns:
            Up to ``max_candidates`` ids, highest score first, ties by lowest id
        """
        if query.dimension != self.dimension:
            raise ValueError(
                f"query dimension {query.dimension} does not match index dimension {self.dimension}"
            )
        if max_candidates <= 0:
            raise ValueError(f"max_candidates must be positive, got {max_candidates}")

        n_stripes = len(self._stripes)
        if scoring == "count":
            increments = np.ones(query.nnz, dtype=np.float64)
        else:
            increments = np.abs(query.weights.astype(np.float64))

        scores: dict[str, float] = defaultdict(float)
        for i, inc in zip(query.indices.tolist(), increments.tolist()):
            if self._postings[i] is None:
                continue
            with self._stripes[i % n_stripes]:
                ids = list(self._postings[i])
            for vector_id in ids:
                scores[vector_id] += inc

        return [
            vector_id
            for vector_id, _ in heapq.nsmallest(
                max_candidates, scores.items(), key=lambda kv: (-kv[1], kv[0])
            )
        ]

    def get(self, vector_id: str) -> SparseVector | None:
        """Latest vector registered under an id."""
        return self._vectors.get(vector_id)

    def postings(self, position: int) -> list[str]:
        """Snapshot of one posting list."""
        plist = self._postings[position]
        if plist is None:
            return []
        with self._stripes[position % len(self._stripes)]:
            return list(plist)

    def ids(self) -> list[str]:
        with self._registry_lock:
            return sorted(self._vectors)

    def stats(self) -> dict[str, int]:
        populated = [p for p in self._postings if p is not None]
        return {
            "vectors": len(self._vectors),
            "posting_lists": len(populated),
            "postings": sum(len(p) for p in populated),
        }

    def __contains__(self, vector_id: object) -> bool:
        return vector_id in self._vectors

    def __len__(self) -> int:
        return len(self._vectors)
