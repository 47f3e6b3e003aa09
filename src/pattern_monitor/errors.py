"""
pattern_monitor/errors.py - Exception taxonomy

    PatternMonitorError
    ├── ProcessingError          (fails one record)
    │   ├── ParseError           payload is not a JSON object
    │   ├── UnsupportedValueError  field value outside {string, number, boolean}
    │   └── StorageError         store call failed after all retries
    ├── CodecError               malformed vector bytes
    ├── DensityError             algebra result fell below the density band
    └── IndexUpdateError         posting-list update failed (non-fatal)
"""
from __future__ import annotations


class PatternMonitorError(Exception):
    """Base class for all pattern_monitor errors."""


class ProcessingError(PatternMonitorError):
    """A record could not be processed; nothing was persisted for it."""


class ParseError(ProcessingError):
    """Raised when a message body is not a JSON object."""


class UnsupportedValueError(ProcessingError):
    """Raised when a field value is an object, array, null or non-finite number."""

    def __init__(self, field: str | None, value: object, reason: str | None = None):
        self.field = field
        self.value = value
        kind = type(value).__name__ if value is not None else "null"
        detail = reason or f"unsupported value type '{kind}'"
        where = f"field '{field}'" if field is not None else "value"
        super().__init__(f"{where}: {detail}")


class StorageError(ProcessingError):
    """Raised when a key-value store operation fails."""


class CodecError(PatternMonitorError):
    """Raised when vector bytes cannot be decoded."""


class DensityError(PatternMonitorError, ValueError):
    """Raised when an algebra result has fewer non-zeros than the band allows."""


class IndexUpdateError(PatternMonitorError):
    """Raised when a posting-list update fails."""

    def __init__(self, vector_id: str, message: str):
        self.vector_id = vector_id
        super().__init__(f"index update failed for '{vector_id}': {message}")
