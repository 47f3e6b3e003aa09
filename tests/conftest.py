"""Shared fixtures: a small vector space keeps the suite fast."""

import pytest

from pattern_monitor.encoder import FieldEncoder
from pattern_monitor.index import PostingIndex
from pattern_monitor.pipeline import PatternMonitor
from pattern_monitor.storage import InMemoryStore
from pattern_monitor.types import EncoderConfig, NumericRange, SpaceConfig
from pattern_monitor.vectors import seed_vector

QUAKE_BODY = (
    b'{"event":"earthquake","magnitude":6.2,'
    b'"location":"Pacific Ocean","depth_km":35}'
)


@pytest.fixture(scope="session")
def space():
    """4096 positions in 256 blocks of 16."""
    return SpaceConfig(dimension=4096, density=1 / 16)


@pytest.fixture(scope="session")
def encoder_config(space):
    return EncoderConfig(
        space=space,
        numeric_ranges={
            "magnitude": NumericRange(low=0.0, high=10.0, bins=20),
            "depth_km": NumericRange(low=0.0, high=700.0, bins=28),
            "score": NumericRange(low=0.0, high=100.0, bins=20),
        },
    )


@pytest.fixture
def encoder(encoder_config):
    return FieldEncoder(encoder_config)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def monitor(store, encoder, space):
    return PatternMonitor(store=store, encoder=encoder, index=PostingIndex(space.dimension))


@pytest.fixture
def vec_a(space):
    return seed_vector("test_vector_a", space)


@pytest.fixture
def vec_b(space):
    return seed_vector("test_vector_b", space)


@pytest.fixture
def vec_c(space):
    return seed_vector("test_vector_c", space)
