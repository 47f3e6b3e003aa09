"""Pattern monitor configuration.

Loads from environment variables and .env file.
Prefix: PATTERN_MONITOR_ (e.g. PATTERN_MONITOR_DIMENSION=16384).
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from .loader import load_range_file
from .storage import InMemoryStore, KeyValueStore, RedisStore, RetryingStore
from .types import (
    EncoderConfig,
    NumericRange,
    SearchConfig,
    SpaceConfig,
    StoreConfig,
)


class MonitorSettings(BaseSettings):
    """Configuration for the pattern monitor.

    All values can be set via environment variables or .env file.
    """

    # ----- Vector space -----
    dimension: int = Field(default=10000, description="Vector dimensionality D.")
    density: float = Field(
        default=0.0625,
        description="Fraction of positions a generated vector occupies.",
    )
    max_nonzero: int | None = Field(
        default=None,
        description="Upper edge of the density band. Defaults to 4 x blocks.",
    )

    # ----- Numeric encoding -----
    numeric_low: float = Field(default=0.0, description="Default range lower bound.")
    numeric_high: float = Field(default=1000.0, description="Default range upper bound.")
    numeric_bins: int = Field(default=20, description="Default number of level bins.")
    numeric_ranges_file: str | None = Field(
        default=None,
        description="YAML file with per-field numeric ranges.",
    )

    # ----- Search -----
    top_k: int = Field(default=5, description="Results returned per search.")
    min_similarity: float = Field(default=0.0, description="Cosine cut-off.")
    candidate_multiplier: int = Field(
        default=10,
        description="Stage-1 shortlist size as a multiple of top_k.",
    )
    scoring: Literal["weight", "count"] = Field(
        default="weight",
        description="Stage-1 overlap score: sum of |query weight| or shared-index count.",
    )
    index_stripes: int = Field(default=64, description="Posting-list lock stripes.")
    probe_on_ingest: bool = Field(
        default=False,
        description="Run a retrieval probe with the first field vector after each record.",
    )

    # ----- Store -----
    store_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Vector store backend.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (store_backend=redis).",
    )
    store_attempts: int = Field(default=3, description="Attempts per store call.")
    store_backoff_seconds: float = Field(
        default=0.05,
        description="Initial retry backoff; doubles per attempt.",
    )
    store_timeout_seconds: float = Field(default=2.0, description="Per-call timeout.")

    model_config = {
        "env_prefix": "PATTERN_MONITOR_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def space_config(self) -> SpaceConfig:
        return SpaceConfig(
            dimension=self.dimension,
            density=self.density,
            max_nonzero=self.max_nonzero,
        )

    def encoder_config(self) -> EncoderConfig:
        """Encoder config; the ranges file (if any) overrides the default range."""
        space = self.space_config()
        if self.numeric_ranges_file:
            return load_range_file(self.numeric_ranges_file).encoder_config(space)
        return EncoderConfig(
            space=space,
            default_range=NumericRange(
                low=self.numeric_low,
                high=self.numeric_high,
                bins=self.numeric_bins,
            ),
        )

    def search_config(self) -> SearchConfig:
        return SearchConfig(
            top_k=self.top_k,
            min_similarity=self.min_similarity,
            candidate_multiplier=self.candidate_multiplier,
            scoring=self.scoring,
        )

    def store_config(self) -> StoreConfig:
        return StoreConfig(
            attempts=self.store_attempts,
            backoff_seconds=self.store_backoff_seconds,
            timeout_seconds=self.store_timeout_seconds,
        )

    def build_store(self) -> KeyValueStore:
        """Configured backend wrapped in the retry policy."""
        if self.store_backend == "redis":
            backend: KeyValueStore = RedisStore(
                url=self.redis_url,
                timeout_seconds=self.store_timeout_seconds,
            )
        else:
            backend = InMemoryStore()
        return RetryingStore(backend, self.store_config())


@lru_cache
def get_settings() -> MonitorSettings:
    """Get cached settings singleton."""
    return MonitorSettings()
