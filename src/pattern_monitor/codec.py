"""
pattern_monitor/codec.py - Canonical binary codec for sparse vectors

Layout (all little endian):

    offset  size  field
    0       4     uint32  dimension D
    4       4     uint32  entry count n
    8       8*n   n x (uint32 index, float32 weight), ascending by index

Equal vectors always encode to identical bytes, so the encoding can be used
as a content address. Decoding validates every structural invariant and
never substitutes a default vector.
"""
from __future__ import annotations

import struct

import numpy as np

from .errors import CodecError
from .vectors import INDEX_DTYPE, WEIGHT_DTYPE, SparseVector

HEADER = struct.Struct("<II")
HEADER_SIZE = HEADER.size

ENTRY_DTYPE = np.dtype([("index", INDEX_DTYPE), ("weight", WEIGHT_DTYPE)])
ENTRY_SIZE = ENTRY_DTYPE.itemsize


def encoded_size(nnz: int) -> int:
    return HEADER_SIZE + ENTRY_SIZE * nnz


def encode(vector: SparseVector) -> bytes:
    """Serialize a vector to its canonical byte form."""
    entries = np.empty(vector.nnz, dtype=ENTRY_DTYPE)
    entries["index"] = vector.indices
    entries["weight"] = vector.weights
    return HEADER.pack(vector.dimension, vector.nnz) + entries.tobytes()


def decode(data: bytes) -> SparseVector:
    """Parse canonical bytes back into a vector.

    Raises:
        CodecError: if the header is truncated, the length disagrees with the
            entry count, an index is out of range or out of order, or a
            weight is zero or non-finite.
    """
    if len(data) < HEADER_SIZE:
        raise CodecError(f"buffer too short for header: {len(data)} bytes")

    dimension, count = HEADER.unpack_from(data, 0)
    if dimension == 0:
        raise CodecError("dimension must be positive")

    expected = encoded_size(count)
    if len(data) != expected:
        raise CodecError(
            f"length {len(data)} inconsistent with entry count {count} (expected {expected})"
        )

    if count == 0:
        return SparseVector.empty(dimension)

    entries = np.frombuffer(data, dtype=ENTRY_DTYPE, count=count, offset=HEADER_SIZE)
    indices = entries["index"].copy()
    weights = entries["weight"].copy()

    if count > 1 and not bool(np.all(indices[1:] > indices[:-1])):
        raise CodecError("indices are not strictly increasing")
    if int(indices[-1]) >= dimension:
        raise CodecError(f"index {int(indices[-1])} out of range for dimension {dimension}")
    if not bool(np.all(np.isfinite(weights))) or bool(np.any(weights == 0)):
        raise CodecError("weights must be finite and non-zero")

    return SparseVector(dimension, indices, weights)
