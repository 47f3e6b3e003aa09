"""
pattern_monitor/vectors.py - Sparse Hypervector Representation and Generation

Representation:
    A SparseVector stores only its non-zero entries as two parallel arrays,
    ``indices`` (uint32, strictly increasing, < D) and ``weights`` (float32).
    Both arrays are read-only once constructed.

Block layout:
    The D positions are split into K = round(density * D) contiguous blocks;
    block j covers [j*D//K, (j+1)*D//K), so sizes differ by at most one.
    Seeded vectors carry exactly one entry per block with a bipolar weight
    (+1 or -1), so they hold exactly K non-zeros for any D.

Seed expansion (pinned, reproducible across builds):
    stream  = SHA-256(seed || uint32_le(0)) || SHA-256(seed || uint32_le(1)) || ...
    words   = stream read as little-endian uint32
    block j : offset = words[j] mod size_j
              weight = -1 if words[j] bit 31 is set else +1
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from functools import cached_property, lru_cache
from typing import Any, Iterable

import numpy as np

from .types import SpaceConfig

INDEX_DTYPE = np.dtype("<u4")
WEIGHT_DTYPE = np.dtype("<f4")

_SIGN_BIT = np.uint32(1 << 31)

# =============================================================================
# GLOBAL CONFIGURATION
# =============================================================================

_config = SpaceConfig()


def configure(
    dimension: int | None = None,
    density: float | None = None,
    max_nonzero: int | None = None,
) -> SpaceConfig:
    """Configure the default vector space.

    Args:
        dimension: Vector dimensionality D
        density: Fraction of positions a generated vector occupies
        max_nonzero: Upper edge of the density band

    Returns:
        Updated configuration
    """
    global _config

    updates = {}
    if dimension is not None:
        updates["dimension"] = dimension
    if density is not None:
        updates["density"] = density
    if max_nonzero is not None:
        updates["max_nonzero"] = max_nonzero

    if updates:
        _config = SpaceConfig(**{**_config.model_dump(), **updates})

    return _config


def get_config() -> SpaceConfig:
    """Get current default space."""
    return _config


# =============================================================================
# SPARSE VECTOR
# =============================================================================


@dataclass(frozen=True, eq=False)
class SparseVector:
    """Immutable sparse hypervector.

    Invariants:
        - indices strictly increasing, all < dimension
        - len(indices) == len(weights)
        - weights finite and non-zero

    Equality is exact: same dimension and identical (index, weight)
    sequences. Similarity tolerance lives in ``operators.similarity``.
    """

    dimension: int
    indices: np.ndarray
    weights: np.ndarray

    def __post_init__(self) -> None:
        indices = np.ascontiguousarray(self.indices, dtype=INDEX_DTYPE)
        weights = np.ascontiguousarray(self.weights, dtype=WEIGHT_DTYPE)

        if self.dimension <= 0:
            raise ValueError(f"dimension must be positive, got {self.dimension}")
        if indices.ndim != 1 or weights.ndim != 1 or len(indices) != len(weights):
            raise ValueError("indices and weights must be 1-D arrays of equal length")
        if len(indices):
            if int(indices[-1]) >= self.dimension:
                raise ValueError(
                    f"index {int(indices[-1])} out of range for dimension {self.dimension}"
                )
            if len(indices) > 1 and not bool(np.all(indices[1:] > indices[:-1])):
                raise ValueError("indices must be strictly increasing")
            if not bool(np.all(np.isfinite(weights))):
                raise ValueError("weights must be finite")
            if bool(np.any(weights == 0)):
                raise ValueError("weights must be non-zero")

        indices.flags.writeable = False
        weights.flags.writeable = False
        object.__setattr__(self, "indices", indices)
        object.__setattr__(self, "weights", weights)

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def empty(cls, dimension: int) -> SparseVector:
        return cls(dimension, np.empty(0, INDEX_DTYPE), np.empty(0, WEIGHT_DTYPE))

    @classmethod
    def from_pairs(
        cls, dimension: int, pairs: Iterable[tuple[int, float]]
    ) -> SparseVector:
        """Create from (index, weight) pairs in any order; zero weights are dropped."""
        items = sorted((int(i), float(w)) for i, w in pairs if w != 0)
        if not items:
            return cls.empty(dimension)
        indices = np.array([i for i, _ in items], dtype=np.int64)
        if len(np.unique(indices)) != len(indices):
            raise ValueError("duplicate indices in pairs")
        if indices[0] < 0:
            raise ValueError(f"negative index {int(indices[0])}")
        weights = np.array([w for _, w in items], dtype=WEIGHT_DTYPE)
        return cls(dimension, indices.astype(INDEX_DTYPE), weights)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def nnz(self) -> int:
        return len(self.indices)

    @property
    def density(self) -> float:
        return self.nnz / self.dimension

    @cached_property
    def squared_norm(self) -> float:
        w = self.weights.astype(np.float64)
        return float(np.dot(w, w))

    @property
    def norm(self) -> float:
        return float(np.sqrt(self.squared_norm))

    def canonical_key(self) -> tuple[int, bytes, bytes]:
        """Total order used wherever operand order must not matter."""
        return (self.dimension, self.indices.tobytes(), self.weights.tobytes())

    def to_dict(self) -> dict[int, float]:
        return {int(i): float(w) for i, w in zip(self.indices, self.weights)}

    def __len__(self) -> int:
        return self.nnz

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SparseVector):
            return NotImplemented
        return (
            self.dimension == other.dimension
            and np.array_equal(self.indices, other.indices)
            and self.weights.tobytes() == other.weights.tobytes()
        )

    def __hash__(self) -> int:
        return hash(self.canonical_key())

    def __neg__(self) -> SparseVector:
        return SparseVector(self.dimension, self.indices, -self.weights)

    def __repr__(self) -> str:
        return f"SparseVector(dimension={self.dimension}, nnz={self.nnz})"


# =============================================================================
# BLOCK LAYOUT
# =============================================================================


@lru_cache(maxsize=32)
def _layout(dimension: int, blocks: int) -> tuple[np.ndarray, np.ndarray]:
    starts = (np.arange(blocks + 1, dtype=np.int64) * dimension) // blocks
    sizes = np.diff(starts)
    starts.flags.writeable = False
    sizes.flags.writeable = False
    return starts, sizes


def block_layout(space: SpaceConfig) -> tuple[np.ndarray, np.ndarray]:
    """Block boundaries (K + 1 start positions, the last one D) and sizes."""
    return _layout(space.dimension, space.blocks)


def block_of(indices: np.ndarray, space: SpaceConfig) -> np.ndarray:
    """Block number of each position."""
    starts, _ = block_layout(space)
    return np.searchsorted(starts, np.asarray(indices, dtype=np.int64), side="right") - 1


# =============================================================================
# SEED EXPANSION
# =============================================================================


def expand_seed(seed: bytes, count: int) -> np.ndarray:
    """Expand seed bytes into ``count`` uint32 words via SHA-256 counter mode."""
    needed = count * 4
    chunks = []
    produced = 0
    counter = 0
    while produced < needed:
        digest = hashlib.sha256(seed + counter.to_bytes(4, "little")).digest()
        chunks.append(digest)
        produced += len(digest)
        counter += 1
    return np.frombuffer(b"".join(chunks)[:needed], dtype=INDEX_DTYPE).copy()


def block_code(seed: bytes, space: SpaceConfig) -> tuple[np.ndarray, np.ndarray]:
    """Per-block (offset, sign) arrays derived from a seed."""
    _, sizes = block_layout(space)
    words = expand_seed(seed, space.blocks)
    offsets = words.astype(np.int64) % sizes
    signs = np.where(words & _SIGN_BIT, -1.0, 1.0).astype(WEIGHT_DTYPE)
    return offsets, signs


def from_block_code(
    offsets: np.ndarray, signs: np.ndarray, space: SpaceConfig
) -> SparseVector:
    """Assemble a one-entry-per-block vector from per-block offsets and signs."""
    starts, _ = block_layout(space)
    return SparseVector(space.dimension, starts[:-1] + offsets, signs)


def seed_vector(seed: str | bytes, space: SpaceConfig | None = None) -> SparseVector:
    """Generate a deterministic bipolar block vector from a seed.

    Properties:
        - Deterministic: same seed and space always produce the same vector
        - Exactly ``space.blocks`` non-zeros (one per block)
        - Quasi-orthogonal: unrelated seeds have cosine near 0
    """
    space = space or _config
    seed_bytes = seed.encode("utf-8") if isinstance(seed, str) else seed
    offsets, signs = block_code(seed_bytes, space)
    return from_block_code(offsets, signs, space)


# =============================================================================
# VECTOR INFO & CHECKS
# =============================================================================


def density_ok(v: SparseVector, space: SpaceConfig) -> bool:
    """True when the non-zero count lies inside the configured band."""
    return v.dimension == space.dimension and space.min_nz <= v.nnz <= space.max_nz


def vector_info(v: SparseVector) -> dict[str, Any]:
    """Diagnostic summary of a vector."""
    w = v.weights.astype(np.float64)
    return {
        "dimension": v.dimension,
        "nnz": v.nnz,
        "density": v.density,
        "l2_norm": v.norm,
        "weight": {
            "min": float(w.min()) if v.nnz else 0.0,
            "max": float(w.max()) if v.nnz else 0.0,
            "mean_abs": float(np.abs(w).mean()) if v.nnz else 0.0,
        },
    }
