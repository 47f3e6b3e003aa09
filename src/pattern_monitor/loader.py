"""
pattern_monitor/loader.py - YAML Numeric Range Loader

Numeric fields are level-encoded against an expected range. Ranges are
declared per field in YAML:

    schema_version: "1.0.0"
    default:
      low: 0
      high: 1000
      bins: 20
    fields:
      magnitude: {low: 0, high: 10, bins: 20}
      depth_km:  {low: 0, high: 700, bins: 28}

Files are validated against the RangeFile schema before use.
"""
from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from .types import EncoderConfig, NumericRange, SpaceConfig


class RangeFile(BaseModel):
    """Schema of a numeric range file."""

    schema_version: str = "1.0.0"
    default: NumericRange = Field(default_factory=NumericRange)
    fields: dict[str, NumericRange] = Field(default_factory=dict)

    def encoder_config(self, space: SpaceConfig | None = None) -> EncoderConfig:
        return EncoderConfig(
            space=space or SpaceConfig(),
            default_range=self.default,
            numeric_ranges=dict(self.fields),
        )


def load_range_file(path: str | Path) -> RangeFile:
    """Load and validate a numeric range file.

    Args:
        path: Path to YAML file

    Returns:
        Parsed RangeFile (an empty file yields all defaults)
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    return RangeFile.model_validate(raw)


def load_numeric_ranges(path: str | Path) -> dict[str, NumericRange]:
    """Per-field ranges from a range file."""
    return dict(load_range_file(path).fields)
