"""
pattern_monitor - Sparse Hypervector Encoding, Storage and Search for Records

Turns flat JSON records into sparse high-dimensional vectors, persists them
in a key-value store and answers "which stored records look like this one".

Quick Start:
    from pattern_monitor import PatternMonitor, encode_field, bind, bundle, similarity

    # Encode fields
    event = encode_field("event", "earthquake")
    mag = encode_field("magnitude", 6.2)
    record = bundle([event, mag])

    # Ingest messages
    monitor = PatternMonitor()
    monitor.process_record("quakes", b'{"event": "earthquake", "magnitude": 6.2}')

    # Query
    hits = monitor.search(monitor.encode_query({"event": "earthquake"}), top_k=5)
    for hit in hits:
        print(hit.vector_id, hit.similarity)

Modules:
    pattern_monitor.vectors   - SparseVector and seeded generation
    pattern_monitor.codec     - Canonical byte encoding
    pattern_monitor.operators - Algebra (bind, bundle, similarity)
    pattern_monitor.encoder   - Field -> vector encoding
    pattern_monitor.records   - Message parsing
    pattern_monitor.index     - Inverted posting-list index
    pattern_monitor.search    - Two-stage search
    pattern_monitor.storage   - Key-value store backends
    pattern_monitor.pipeline  - Per-record ingest pipeline
    pattern_monitor.config    - Environment settings
    pattern_monitor.loader    - YAML numeric range loading
    pattern_monitor.types     - Pydantic type definitions
"""

__version__ = "1.0.0"

# Core vector operations
from .vectors import (
    SparseVector,
    seed_vector,
    block_layout,
    vector_info,
    get_config,
    configure,
)

# Algebraic operators
from .operators import (
    bind,
    unbind,
    bundle,
    weighted_bundle,
    similarity,
    batch_similarity,
)

# Codec
from .codec import encode, decode

# Encoding
from .encoder import FieldEncoder, encode_field, role_vector, value_vector
from .records import Record, parse_record

# Index & search
from .index import PostingIndex
from .search import SearchHit, TwoStageSearch, search

# Storage & pipeline
from .storage import KeyValueStore, InMemoryStore, RedisStore, RetryingStore
from .pipeline import PatternMonitor, RecordOutcome, bundle_key, semantic_key

# Errors
from .errors import (
    PatternMonitorError,
    ProcessingError,
    ParseError,
    UnsupportedValueError,
    StorageError,
    CodecError,
    DensityError,
    IndexUpdateError,
)

# Types
from .types import (
    SpaceConfig,
    NumericRange,
    EncoderConfig,
    SearchConfig,
    StoreConfig,
)

__all__ = [
    # Version
    "__version__",
    # Vectors
    "SparseVector",
    "seed_vector",
    "block_layout",
    "vector_info",
    "get_config",
    "configure",
    # Operators
    "bind",
    "unbind",
    "bundle",
    "weighted_bundle",
    "similarity",
    "batch_similarity",
    # Codec
    "encode",
    "decode",
    # Encoding
    "FieldEncoder",
    "encode_field",
    "role_vector",
    "value_vector",
    "Record",
    "parse_record",
    # Index & search
    "PostingIndex",
    "SearchHit",
    "TwoStageSearch",
    "search",
    # Storage & pipeline
    "KeyValueStore",
    "InMemoryStore",
    "RedisStore",
    "RetryingStore",
    "PatternMonitor",
    "RecordOutcome",
    "bundle_key",
    "semantic_key",
    # Errors
    "PatternMonitorError",
    "ProcessingError",
    "ParseError",
    "UnsupportedValueError",
    "StorageError",
    "CodecError",
    "DensityError",
    "IndexUpdateError",
    # Types
    "SpaceConfig",
    "NumericRange",
    "EncoderConfig",
    "SearchConfig",
    "StoreConfig",
]
