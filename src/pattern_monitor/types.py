"""
pattern_monitor/types.py - Pydantic type definitions

Uses Pydantic v2 for validation. All configuration objects are frozen so
they can be shared freely between threads and used as cache keys.
"""
from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, Field, model_validator

# =============================================================================
# VECTOR SPACE CONFIGURATION
# =============================================================================


class SpaceConfig(BaseModel):
    """Layout of the sparse hypervector space.

    The dimension is split into ``round(density * dimension)`` contiguous
    blocks whose sizes differ by at most one position. Generated vectors
    hold exactly one non-zero per block, so they carry exactly
    ``round(density * dimension)`` non-zeros for any dimension.
    """

    dimension: int = Field(
        default=10000,
        ge=64,
        le=2**24,
        description="Vector dimensionality D",
    )
    density: float = Field(
        default=0.0625,
        gt=0.0,
        le=1.0,
        description="Fraction of positions a generated vector occupies",
    )
    max_nonzero: int | None = Field(
        default=None,
        ge=1,
        description="Upper edge of the density band (default: 4 x blocks, at most D)",
    )

    @model_validator(mode="after")
    def validate_layout(self) -> SpaceConfig:
        if self.blocks < 1:
            raise ValueError(
                f"density {self.density} leaves no non-zeros at dimension {self.dimension}"
            )
        if self.max_nonzero is not None:
            if self.max_nonzero < self.blocks:
                raise ValueError(
                    f"max_nonzero {self.max_nonzero} is below the block count {self.blocks}"
                )
            if self.max_nonzero > self.dimension:
                raise ValueError(
                    f"max_nonzero {self.max_nonzero} exceeds the dimension {self.dimension}"
                )
        return self

    @property
    def blocks(self) -> int:
        """Number of blocks, equal to the non-zero count of a generated vector."""
        return int(round(self.density * self.dimension))

    @property
    def min_nz(self) -> int:
        return self.blocks

    @property
    def max_nz(self) -> int:
        if self.max_nonzero is not None:
            return self.max_nonzero
        return min(4 * self.blocks, self.dimension)

    model_config = {"frozen": True}


# =============================================================================
# ENCODER CONFIGURATION
# =============================================================================


class NumericRange(BaseModel):
    """Expected value range of a numeric field, quantized into bins."""

    low: float = 0.0
    high: float = 1000.0
    bins: int = Field(default=20, ge=1, le=4096, description="Number of bins")

    @model_validator(mode="after")
    def validate_bounds(self) -> NumericRange:
        if not (math.isfinite(self.low) and math.isfinite(self.high)):
            raise ValueError("numeric range bounds must be finite")
        if self.high <= self.low:
            raise ValueError(f"high ({self.high}) must exceed low ({self.low})")
        return self

    def position(self, value: float) -> tuple[int, float]:
        """Map a value to (lower level, blend factor), clamping to the range."""
        clamped = min(max(value, self.low), self.high)
        pos = (clamped - self.low) / (self.high - self.low) * self.bins
        level = min(int(math.floor(pos)), self.bins - 1)
        return level, pos - level

    model_config = {"frozen": True}


class EncoderConfig(BaseModel):
    """Configuration for field encoding."""

    space: SpaceConfig = Field(default_factory=SpaceConfig)
    default_range: NumericRange = Field(default_factory=NumericRange)
    numeric_ranges: dict[str, NumericRange] = Field(
        default_factory=dict,
        description="Per-field numeric ranges (field name -> range)",
    )

    def range_for(self, field: str) -> NumericRange:
        return self.numeric_ranges.get(field, self.default_range)

    model_config = {"frozen": True}


# =============================================================================
# SEARCH & STORE CONFIGURATION
# =============================================================================


class SearchConfig(BaseModel):
    """Configuration for two-stage search."""

    top_k: int = Field(default=5, ge=1, le=10000)
    min_similarity: float = Field(default=0.0, ge=-1.0, le=1.0)
    candidate_multiplier: int = Field(
        default=10,
        ge=2,
        le=1000,
        description="Stage-1 shortlist size as a multiple of top_k",
    )
    scoring: Literal["weight", "count"] = Field(
        default="weight",
        description="Stage-1 overlap score: sum of |query weight| or shared-index count",
    )

    model_config = {"frozen": True}


class StoreConfig(BaseModel):
    """Retry policy for external store calls."""

    attempts: int = Field(default=3, ge=1, le=10)
    backoff_seconds: float = Field(default=0.05, ge=0.0, le=10.0)
    timeout_seconds: float = Field(default=2.0, gt=0.0, le=60.0)

    model_config = {"frozen": True}
