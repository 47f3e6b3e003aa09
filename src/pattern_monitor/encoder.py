"""
pattern_monitor/encoder.py - Field Encoding into Hypervectors

Every field becomes ``bind(role_vector(name), value_vector(value))``.

Role vectors:
    Seeded from the field name alone, so a field keeps the same direction
    in vector space whatever its value.

String / boolean values:
    Seeded from the UTF-8 JSON text of the value ("earthquake" with quotes,
    true / false), so the string "true" and the boolean true differ.

Numeric values (level encoding):
    A NumericRange [low, high] with B bins has B + 1 level vectors. Each
    block of the space is assigned a switch level s in 1..B; level k holds
    the block's primary entry while k < s and its alternate entry after.
    Adjacent levels therefore differ in about K / B blocks and the two end
    levels share none. A value at fractional position k + t is the blend
        (1 - t) · L_k + t · L_{k+1}
    so cosine falls off linearly with numeric distance.

All seeds go through the SHA-256 expansion pinned in vectors.py.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

import numpy as np

from .errors import UnsupportedValueError
from .operators import accumulate, bind, sparsify
from .records import FieldRecord, FieldValue, Record, ValueKind
from .types import EncoderConfig, NumericRange, SpaceConfig
from .vectors import (
    INDEX_DTYPE,
    SparseVector,
    block_code,
    block_layout,
    expand_seed,
    from_block_code,
    get_config,
)

logger = logging.getLogger(__name__)

ROLE_TAG = b"role\x00"
VALUE_TAG = b"value\x00"
LEVEL_TAG = b"level\x00"


# =============================================================================
# LEVEL CODEBOOK
# =============================================================================


@dataclass(frozen=True, eq=False)
class LevelCodebook:
    """Per-block primary/alternate entries and switch levels for one range."""

    numeric_range: NumericRange
    space: SpaceConfig
    base: np.ndarray
    primary_offsets: np.ndarray
    primary_signs: np.ndarray
    alternate_offsets: np.ndarray
    alternate_signs: np.ndarray
    switch_levels: np.ndarray

    @classmethod
    def build(cls, numeric_range: NumericRange, space: SpaceConfig) -> LevelCodebook:
        seed = LEVEL_TAG + (
            f"{numeric_range.low!r}:{numeric_range.high!r}:{numeric_range.bins}"
        ).encode("utf-8")
        blocks = space.blocks

        primary_offsets, primary_signs = block_code(seed + b":primary", space)

        # Alternate offset differs from the primary one in any block wider than 1
        alt_words = expand_seed(seed + b":alternate", blocks)
        starts, sizes = block_layout(space)
        span = np.maximum(sizes - 1, 1)
        flip = 1 + alt_words.astype(np.int64) % span
        alternate_offsets = (primary_offsets + flip) % sizes
        alternate_signs = np.where(alt_words & np.uint32(1 << 31), -1.0, 1.0)

        # Rank blocks by a hashed key, then spread ranks evenly over 1..bins
        order_words = expand_seed(seed + b":order", blocks)
        order = np.argsort(order_words, kind="stable")
        rank = np.empty(blocks, dtype=np.int64)
        rank[order] = np.arange(blocks)
        switch_levels = 1 + (rank * numeric_range.bins) // blocks

        base = np.asarray(starts[:-1], dtype=np.int64)
        return cls(
            numeric_range=numeric_range,
            space=space,
            base=base,
            primary_offsets=primary_offsets.astype(np.int64),
            primary_signs=primary_signs.astype(np.float64),
            alternate_offsets=alternate_offsets.astype(np.int64),
            alternate_signs=alternate_signs.astype(np.float64),
            switch_levels=switch_levels,
        )

    def level(self, k: int) -> SparseVector:
        """Level vector L_k for k in 0..bins."""
        if not 0 <= k <= self.numeric_range.bins:
            raise ValueError(f"level {k} outside 0..{self.numeric_range.bins}")
        use_primary = k < self.switch_levels
        offsets = np.where(use_primary, self.primary_offsets, self.alternate_offsets)
        signs = np.where(use_primary, self.primary_signs, self.alternate_signs)
        return from_block_code(offsets.astype(INDEX_DTYPE), signs, self.space)

    def interpolate(self, value: float) -> SparseVector:
        """Blend the two levels around ``value``."""
        k, t = self.numeric_range.position(value)

        before = k < self.switch_levels        # state in L_k
        after = (k + 1) < self.switch_levels   # state in L_{k+1}
        stable = before == after

        # Blocks identical in both levels keep full weight
        s_off = np.where(before[stable], self.primary_offsets[stable], self.alternate_offsets[stable])
        s_sgn = np.where(before[stable], self.primary_signs[stable], self.alternate_signs[stable])
        s_idx = self.base[stable] + s_off

        # Blocks switching between L_k and L_{k+1} split their weight
        moving = ~stable
        p_idx = self.base[moving] + self.primary_offsets[moving]
        a_idx = self.base[moving] + self.alternate_offsets[moving]

        indices = np.concatenate([s_idx, p_idx, a_idx])
        weights = np.concatenate(
            [
                s_sgn,
                (1.0 - t) * self.primary_signs[moving],
                t * self.alternate_signs[moving],
            ]
        )
        merged_idx, merged_w = accumulate(indices, weights)
        return sparsify(merged_idx, merged_w, self.space)


# =============================================================================
# FIELD ENCODER
# =============================================================================


class FieldEncoder:
    """Deterministic field -> hypervector encoder.

    Role vectors and level codebooks are cached; both are pure functions of
    the configuration, so a cache hit and a fresh computation are identical.

    Example:
        encoder = FieldEncoder(EncoderConfig())
        v = encoder.encode_field("magnitude", 6.2)
        fields = encoder.encode_record(parse_record(subject, body))
    """

    def __init__(self, config: EncoderConfig | None = None):
        self.config = config or EncoderConfig(space=get_config())
        self.space = self.config.space
        self._roles: dict[str, SparseVector] = {}
        self._levels: dict[NumericRange, LevelCodebook] = {}
        self._lock = threading.Lock()

    def role_vector(self, field_name: str) -> SparseVector:
        """Value-independent vector for a field name."""
        cached = self._roles.get(field_name)
        if cached is not None:
            return cached
        vector = self._seeded(ROLE_TAG + field_name.encode("utf-8"))
        with self._lock:
            self._roles.setdefault(field_name, vector)
        return vector

    def level_codebook(self, numeric_range: NumericRange) -> LevelCodebook:
        cached = self._levels.get(numeric_range)
        if cached is not None:
            return cached
        codebook = LevelCodebook.build(numeric_range, self.space)
        with self._lock:
            self._levels.setdefault(numeric_range, codebook)
        return codebook

    def value_vector(self, value: FieldValue | Any, field_name: str | None = None) -> SparseVector:
        """Vector for a scalar value (numbers use the field's range)."""
        if not isinstance(value, FieldValue):
            value = FieldValue.from_python(value, field_name)

        if value.kind is ValueKind.NUMBER:
            numeric_range = (
                self.config.range_for(field_name)
                if field_name is not None
                else self.config.default_range
            )
            return self.level_codebook(numeric_range).interpolate(float(value.value))

        return self._seeded(VALUE_TAG + value.json_text().encode("utf-8"))

    def encode_field(self, field_name: str, value: FieldValue | Any) -> SparseVector:
        """Encode one field as role ⊗ value.

        Raises:
            UnsupportedValueError: if the value is not a supported scalar
        """
        role = self.role_vector(field_name)
        filler = self.value_vector(value, field_name)
        return bind(role, filler, self.space)

    def encode_record(self, record: Record) -> list[tuple[FieldRecord, SparseVector]]:
        """Encode every field of a record, in field order.

        Either every field encodes or an error is raised; there is no
        partially encoded result.
        """
        encoded = [(f, self.encode_field(f.name, f.value)) for f in record.fields]
        logger.debug(f"encoded {len(encoded)} field(s) for subject '{record.subject}'")
        return encoded

    def _seeded(self, seed: bytes) -> SparseVector:
        offsets, signs = block_code(seed, self.space)
        return from_block_code(offsets, signs, self.space)


# =============================================================================
# MODULE-LEVEL API
# =============================================================================

_encoders: dict[SpaceConfig, FieldEncoder] = {}
_encoders_lock = threading.Lock()


def get_encoder(space: SpaceConfig | None = None) -> FieldEncoder:
    """Shared encoder with default numeric ranges for a space."""
    space = space or get_config()
    encoder = _encoders.get(space)
    if encoder is None:
        with _encoders_lock:
            encoder = _encoders.setdefault(space, FieldEncoder(EncoderConfig(space=space)))
    return encoder


def encode_field(
    field_name: str,
    value: Any,
    dimension: int | None = None,
    density: float | None = None,
) -> SparseVector:
    """Encode a field/value pair into a sparse hypervector.

    Args:
        field_name: Field name (selects the role vector)
        value: String, number or boolean
        dimension: Vector dimensionality (default: global config)
        density: Fraction of non-zero positions (default: global config)

    Returns:
        bind(role_vector(field_name), value_vector(value))

    Raises:
        UnsupportedValueError: for objects, arrays, null or non-finite numbers
    """
    if dimension is None and density is None:
        space = get_config()
    else:
        base = get_config()
        space = SpaceConfig(
            dimension=dimension if dimension is not None else base.dimension,
            density=density if density is not None else base.density,
        )
    return get_encoder(space).encode_field(field_name, value)


def role_vector(field_name: str, space: SpaceConfig | None = None) -> SparseVector:
    return get_encoder(space).role_vector(field_name)


def value_vector(value: Any, field_name: str | None = None, space: SpaceConfig | None = None) -> SparseVector:
    return get_encoder(space).value_vector(value, field_name)


__all__ = [
    "FieldEncoder",
    "LevelCodebook",
    "UnsupportedValueError",
    "encode_field",
    "get_encoder",
    "role_vector",
    "value_vector",
]
