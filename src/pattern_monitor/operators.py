"""
pattern_monitor/operators.py - Algebraic Operations over Sparse Block Vectors

BINDING (⊗):
    Block-local multiplication. Every pair of entries (i, j) that fall in
    the same block contributes weight w_a[i] · w_b[j] at offset
        (-(offset_i + offset_j)) mod block_size
    of that block. The offset map is symmetric and undoes itself for a
    fixed key offset, and it works for any block size. Blocks that are
    empty in either operand contribute nothing.

    Properties:
    - Commutative: a ⊗ b = b ⊗ a (byte-identical)
    - Self-inverse: a ⊗ (a ⊗ b) = b, up to the peak rescale, for any
      in-band b when a holds one ±1 entry per block (generated vectors,
      role vectors, string fields). Keys with a second entry in a few
      blocks (numeric field blends) recover b approximately. Keys with
      several entries in most blocks, such as bundles, are not unbinding
      keys.
    - Pseudo-orthogonal: a ⊗ b is dissimilar to both a and b
    - Similarity-preserving: sim(r ⊗ x, r ⊗ y) = sim(x, y) for block vectors r

BUNDLING (⊕):
    Exact elementwise sum over the union of indices, then top-k.
    bundle(a, b, ...) = sparsify(a + b + ...)

    Properties:
    - Order-independent: the sum is taken in a canonical operand order, so
      any permutation of the same multiset gives byte-identical output
    - Creates "set" representation: bundle is similar to all components

SPARSIFICATION:
    Keep the ``max_nz`` entries with the largest |weight| (on ties the
    lowest index is dropped first), then rescale so the largest magnitude
    is 1. Results with fewer than ``min_nz`` entries raise DensityError.

SIMILARITY:
    Cosine over the index intersection, found by binary-search merge of the
    smaller vector into the larger one.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from .errors import DensityError
from .types import SpaceConfig
from .vectors import WEIGHT_DTYPE, SparseVector, block_layout, block_of, get_config

# =============================================================================
# HELPERS
# =============================================================================


def _resolve_space(space: SpaceConfig | None, *vectors: SparseVector) -> SpaceConfig:
    space = space or get_config()
    for v in vectors:
        if v.dimension != space.dimension:
            raise ValueError(
                f"dimension mismatch: vector has {v.dimension}, space has {space.dimension}"
            )
    return space


def accumulate(indices: np.ndarray, weights: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Sum weights per unique index, in the order the entries are given."""
    unique, inverse = np.unique(indices, return_inverse=True)
    sums = np.bincount(inverse.ravel(), weights=weights, minlength=len(unique))
    return unique, sums


def sparsify(
    indices: np.ndarray,
    weights: np.ndarray,
    space: SpaceConfig,
) -> SparseVector:
    """Clamp an accumulated (sorted, unique) entry set into the density band.

    Args:
        indices: Sorted unique positions
        weights: Accumulated float64 weights
        space: Target space

    Returns:
        SparseVector with at most ``space.max_nz`` entries, peak |weight| = 1

    Raises:
        DensityError: if fewer than ``space.min_nz`` non-zeros survive
    """
    indices = np.asarray(indices, dtype=np.int64)
    weights = np.asarray(weights, dtype=np.float64)

    keep = weights != 0
    indices, weights = indices[keep], weights[keep]

    if len(indices) > space.max_nz:
        # lexsort: last key is primary -> |w| descending, then index descending
        order = np.lexsort((-indices, -np.abs(weights)))
        chosen = np.sort(order[: space.max_nz])
        indices, weights = indices[chosen], weights[chosen]

    if len(weights):
        weights = weights / np.abs(weights).max()

    weights = weights.astype(WEIGHT_DTYPE)
    keep = weights != 0
    indices, weights = indices[keep], weights[keep]

    if len(indices) < space.min_nz:
        raise DensityError(
            f"result has {len(indices)} non-zeros, below the band minimum {space.min_nz}"
        )
    return SparseVector(space.dimension, indices, weights)


# =============================================================================
# BINDING OPERATIONS
# =============================================================================


def bind(a: SparseVector, b: SparseVector, space: SpaceConfig | None = None) -> SparseVector:
    """Bind two vectors via block-local multiplication.

    Use for: role-filler pairs (field name ⊗ field value).

    Args:
        a: First vector
        b: Second vector
        space: Vector space (default: global config)

    Returns:
        Bound vector, sparsified into the density band

    Example:
        bound = bind(role_vector("event"), value_vector("earthquake"))
        # bound is similar to neither input, but
        # bind(role_vector("event"), bound) recovers the value vector.
    """
    space = _resolve_space(space, a, b)
    a, b = sorted((a, b), key=SparseVector.canonical_key)

    starts, sizes = block_layout(space)

    a_idx = a.indices.astype(np.int64)
    b_idx = b.indices.astype(np.int64)
    a_blocks = block_of(a_idx, space)
    b_blocks = block_of(b_idx, space)

    # For each entry of a, the run of b entries in the same block
    lo = np.searchsorted(b_blocks, a_blocks, side="left")
    hi = np.searchsorted(b_blocks, a_blocks, side="right")
    counts = hi - lo
    total = int(counts.sum())

    a_rep = np.repeat(np.arange(len(a_idx)), counts)
    run_start = np.repeat(np.cumsum(counts) - counts, counts)
    b_sel = np.repeat(lo, counts) + (np.arange(total) - run_start)

    blk = a_blocks[a_rep]
    base = starts[blk]
    offset = (a_idx[a_rep] - base) + (b_idx[b_sel] - base)
    out_idx = base + np.mod(-offset, sizes[blk])
    out_w = a.weights[a_rep].astype(np.float64) * b.weights[b_sel].astype(np.float64)

    indices, weights = accumulate(out_idx, out_w)
    return sparsify(indices, weights, space)


def unbind(bound: SparseVector, key: SparseVector, space: SpaceConfig | None = None) -> SparseVector:
    """Unbind a vector. Binding is its own inverse, so this is bind.

    If bound = a ⊗ b, then unbind(bound, a) ≈ b
    """
    return bind(bound, key, space)


# =============================================================================
# BUNDLING OPERATIONS
# =============================================================================


def bundle(vectors: Sequence[SparseVector], space: SpaceConfig | None = None) -> SparseVector:
    """Bundle vectors via superposition.

    The exact sum over the union of indices is computed before any
    truncation, in canonical operand order.

    Args:
        vectors: Vectors to bundle (any order)
        space: Vector space (default: global config)

    Returns:
        Bundled vector

    Note:
        Capacity falls as more vectors share the ``max_nz`` entries; beyond
        ``max_nz / min_nz`` operands some entries are necessarily dropped.
    """
    vectors = list(vectors)
    if len(vectors) == 0:
        raise ValueError("At least one vector required")
    space = _resolve_space(space, *vectors)

    ordered = sorted(vectors, key=SparseVector.canonical_key)
    idx = np.concatenate([v.indices.astype(np.int64) for v in ordered])
    w = np.concatenate([v.weights.astype(np.float64) for v in ordered])

    indices, weights = accumulate(idx, w)
    return sparsify(indices, weights, space)


def weighted_bundle(
    vectors: Sequence[SparseVector],
    weights: Sequence[float],
    space: SpaceConfig | None = None,
) -> SparseVector:
    """Bundle vectors with weights.

    Computes: sparsify(Σ w_i · v_i)

    Args:
        vectors: List of vectors to bundle
        weights: Corresponding weights

    Returns:
        Weighted bundle
    """
    if len(vectors) != len(weights):
        raise ValueError("vectors and weights must have same length")
    if len(vectors) == 0:
        raise ValueError("At least one vector required")
    space = _resolve_space(space, *vectors)

    pairs = sorted(
        zip(vectors, (float(x) for x in weights)),
        key=lambda p: (p[0].canonical_key(), p[1]),
    )
    idx = np.concatenate([v.indices.astype(np.int64) for v, _ in pairs])
    w = np.concatenate([v.weights.astype(np.float64) * s for v, s in pairs])

    indices, summed = accumulate(idx, w)
    return sparsify(indices, summed, space)


# =============================================================================
# SIMILARITY
# =============================================================================


def similarity(a: SparseVector, b: SparseVector) -> float:
    """Cosine similarity between two sparse vectors.

    Dot product over the shared indices divided by the product of each
    vector's own L2 norm.

    Returns:
        Similarity in [-1, 1]; exactly 1.0 for identical vectors and 0.0
        when the vectors share no index or either is empty.
    """
    if a.dimension != b.dimension:
        raise ValueError(f"dimension mismatch: {a.dimension} vs {b.dimension}")
    if a.nnz == 0 or b.nnz == 0:
        return 0.0
    if a == b:
        return 1.0

    small, large = (a, b) if a.nnz <= b.nnz else (b, a)
    pos = np.searchsorted(large.indices, small.indices)
    pos = np.minimum(pos, large.nnz - 1)
    hit = large.indices[pos] == small.indices
    if not hit.any():
        return 0.0

    dot = float(
        np.dot(
            small.weights[hit].astype(np.float64),
            large.weights[pos[hit]].astype(np.float64),
        )
    )
    sim = dot / math.sqrt(a.squared_norm * b.squared_norm)
    return max(-1.0, min(1.0, sim))


def batch_similarity(query: SparseVector, vectors: Sequence[SparseVector]) -> np.ndarray:
    """Similarity of a query against each vector, as a float64 array."""
    return np.array([similarity(query, v) for v in vectors], dtype=np.float64)


def orthogonality_check(vectors: Sequence[SparseVector], threshold: float = 0.1) -> bool:
    """True when every pair of vectors has |cosine| below threshold."""
    for i in range(len(vectors)):
        for j in range(i + 1, len(vectors)):
            if abs(similarity(vectors[i], vectors[j])) >= threshold:
                return False
    return True
