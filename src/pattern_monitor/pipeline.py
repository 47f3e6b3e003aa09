"""
pattern_monitor/pipeline.py - Per-record ingest pipeline

Flow for one inbound message (subject, body):

    parse       body -> Record            ParseError / UnsupportedValueError
    encode      field -> role ⊗ value     all fields or none
    bundle      ⊕ of every field vector   the record's master vector
    persist     one atomic batch write    StorageError, nothing partial
    index       posting-list inserts      failures are logged and queued

Key layout (bit-exact, shared with other consumers of the store):

    semantic:v1:{field}     one per field; NOT scoped by subject, so the
                            latest record carrying a field name owns it
    bundle:v1:{subject}     one per subject; last write wins

Values are codec.encode() bytes.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from . import codec
from .encoder import FieldEncoder
from .errors import (
    CodecError,
    DensityError,
    IndexUpdateError,
    ParseError,
    ProcessingError,
    StorageError,
    UnsupportedValueError,
)
from .index import PostingIndex
from .operators import bundle
from .records import parse_record, record_from_mapping
from .search import SearchHit, TwoStageSearch
from .storage import InMemoryStore, KeyValueStore
from .types import SearchConfig
from .vectors import SparseVector

logger = logging.getLogger(__name__)

SEMANTIC_PREFIX = "semantic:v1"
BUNDLE_PREFIX = "bundle:v1"
PROBE_TOP_K = 5


def semantic_key(field_name: str) -> str:
    return f"{SEMANTIC_PREFIX}:{field_name}"


def bundle_key(subject: str) -> str:
    return f"{BUNDLE_PREFIX}:{subject}"


@dataclass
class RecordOutcome:
    """What one processed record wrote."""

    subject: str
    field_keys: list[str] = field(default_factory=list)
    bundle_key: str | None = None
    bytes_written: int = 0
    reindex_pending: list[str] = field(default_factory=list)
    probe_hits: list[SearchHit] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def persisted(self) -> bool:
        return self.bundle_key is not None

    @property
    def keys(self) -> list[str]:
        return self.field_keys + ([self.bundle_key] if self.bundle_key else [])


@dataclass
class BatchReport:
    """Result of process_many, in input order."""

    outcomes: list[RecordOutcome | None]
    errors: list[tuple[str, ProcessingError]] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o is not None)


class PatternMonitor:
    """Encode, persist, index and search structured records.

    Example:
        monitor = PatternMonitor()
        monitor.process_record("quakes", b'{"event": "earthquake", "magnitude": 6.2}')
        hits = monitor.search(monitor.encode_query({"event": "earthquake"}))
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        encoder: FieldEncoder | None = None,
        index: PostingIndex | None = None,
        search_config: SearchConfig | None = None,
        probe_on_ingest: bool = False,
    ):
        self.store = store if store is not None else InMemoryStore()
        self.encoder = encoder or FieldEncoder()
        self.space = self.encoder.space
        self.index = index if index is not None else PostingIndex(self.space.dimension)
        self.searcher = TwoStageSearch(self.index, search_config)
        self.probe_on_ingest = probe_on_ingest

        self._pending: set[str] = set()
        self._lock = threading.Lock()
        self._stats = {
            "records_processed": 0,
            "records_skipped": 0,
            "records_failed": 0,
            "keys_written": 0,
            "bytes_written": 0,
        }

    @classmethod
    def from_settings(cls, settings: Any = None) -> PatternMonitor:
        """Build a monitor from MonitorSettings (default: environment)."""
        from .config import get_settings

        settings = settings or get_settings()
        encoder = FieldEncoder(settings.encoder_config())
        return cls(
            store=settings.build_store(),
            encoder=encoder,
            index=PostingIndex(encoder.space.dimension, stripes=settings.index_stripes),
            search_config=settings.search_config(),
            probe_on_ingest=settings.probe_on_ingest,
        )

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def process_record(self, subject: str, body: bytes | str) -> RecordOutcome:
        """Process one message end to end.

        Either every key of the record is written or none is.

        Raises:
            ParseError: body is not a JSON object
            UnsupportedValueError: a field value is not a supported scalar
            StorageError: the batch write failed after retries
        """
        start = time.time()
        record = parse_record(subject, body)
        outcome = RecordOutcome(subject=subject)

        if not record.fields:
            logger.warning(f"empty JSON object on '{subject}'; skipping")
            self._bump("records_skipped")
            return outcome

        try:
            encoded = self.encoder.encode_record(record)
            master = bundle([v for _, v in encoded], self.space)
        except DensityError as e:
            raise ProcessingError(f"encoding failed for '{subject}': {e}") from e

        vectors: dict[str, SparseVector] = {
            semantic_key(f.name): v for f, v in encoded
        }
        vectors[bundle_key(subject)] = master
        payload = {key: codec.encode(v) for key, v in vectors.items()}

        self.store.set_many(payload)

        outcome.field_keys = [semantic_key(f.name) for f, _ in encoded]
        outcome.bundle_key = bundle_key(subject)
        outcome.bytes_written = sum(len(b) for b in payload.values())
        logger.info(
            f"stored {len(encoded)} field vector(s) and master bundle for '{subject}' "
            f"({outcome.bytes_written} bytes)"
        )

        for key, vector in vectors.items():
            try:
                self.index.insert(key, vector)
            except IndexUpdateError as e:
                logger.warning(f"{e}; queued for reindex")
                outcome.reindex_pending.append(key)
                with self._lock:
                    self._pending.add(key)

        if self.probe_on_ingest and len(encoded) > 1:
            outcome.probe_hits = self.search(encoded[0][1], top_k=PROBE_TOP_K)
            logger.debug(
                f"probe for '{subject}' returned {len(outcome.probe_hits)} hit(s)"
            )

        outcome.elapsed_ms = (time.time() - start) * 1000
        self._bump("records_processed")
        self._bump("keys_written", len(payload))
        self._bump("bytes_written", outcome.bytes_written)
        return outcome

    def handle_message(self, subject: str, body: bytes | str) -> RecordOutcome | None:
        """Messaging entry point.

        Bad messages are logged and dropped (returns None). Storage failures
        are logged and re-raised so the transport can redeliver.
        """
        logger.info(f"received message on '{subject}' ({len(body)} bytes)")
        try:
            return self.process_record(subject, body)
        except StorageError as e:
            logger.error(f"storage failure on '{subject}': {e}")
            self._bump("records_failed")
            raise
        except (ParseError, UnsupportedValueError) as e:
            logger.warning(f"skipping message on '{subject}': {e}")
            self._bump("records_skipped")
            return None
        except ProcessingError as e:
            logger.warning(f"dropping message on '{subject}': {e}")
            self._bump("records_failed")
            return None

    def process_many(
        self,
        messages: Iterable[tuple[str, bytes | str]],
        max_workers: int = 4,
    ) -> BatchReport:
        """Process messages concurrently; one failure never stops the others.

        Records for the same subject race; the last completed write wins.
        """
        start = time.time()
        messages = list(messages)
        outcomes: list[RecordOutcome | None] = [None] * len(messages)
        errors: list[tuple[str, ProcessingError]] = []

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(self.process_record, subject, body)
                for subject, body in messages
            ]
            for i, future in enumerate(futures):
                subject = messages[i][0]
                try:
                    outcomes[i] = future.result()
                except ProcessingError as e:
                    logger.warning(f"record {i} on '{subject}' failed: {e}")
                    errors.append((subject, e))

        return BatchReport(
            outcomes=outcomes,
            errors=errors,
            elapsed_ms=(time.time() - start) * 1000,
        )

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    def encode_query(self, payload: Mapping[str, Any] | bytes | str) -> SparseVector:
        """Encode a partial record the same way stored bundles are built."""
        if isinstance(payload, Mapping):
            record = record_from_mapping("query", payload)
        else:
            record = parse_record("query", payload)
        if not record.fields:
            raise ParseError("query has no fields")
        encoded = self.encoder.encode_record(record)
        return bundle([v for _, v in encoded], self.space)

    def search(
        self,
        query: SparseVector,
        top_k: int | None = None,
        min_similarity: float | None = None,
        max_candidates: int | None = None,
    ) -> list[SearchHit]:
        return self.searcher.search(query, top_k, min_similarity, max_candidates)

    def load_vector(self, key: str) -> SparseVector | None:
        """Decode a stored vector.

        Raises:
            CodecError: if the stored bytes are malformed
        """
        data = self.store.get(key)
        if data is None:
            return None
        return codec.decode(data)

    # -------------------------------------------------------------------------
    # Reindexing
    # -------------------------------------------------------------------------

    @property
    def pending_reindex(self) -> set[str]:
        with self._lock:
            return set(self._pending)

    def reindex_pending(self) -> int:
        """Retry index inserts for queued keys from their stored vectors.

        Returns:
            Number of keys reindexed
        """
        done = 0
        for key in sorted(self.pending_reindex):
            try:
                vector = self.load_vector(key)
            except CodecError as e:
                logger.error(f"cannot reindex '{key}': {e}")
                self._discard_pending(key)
                continue
            if vector is None:
                logger.warning(f"'{key}' no longer stored; dropping from reindex queue")
                self._discard_pending(key)
                continue
            try:
                self.index.insert(key, vector)
            except IndexUpdateError as e:
                logger.warning(f"reindex still failing: {e}")
                continue
            self._discard_pending(key)
            done += 1

        if done:
            logger.info(f"reindexed {done} key(s)")
        return done

    @property
    def stats(self) -> dict[str, int]:
        with self._lock:
            stats = dict(self._stats)
        stats["reindex_pending"] = len(self.pending_reindex)
        stats["indexed_vectors"] = len(self.index)
        return stats

    def _discard_pending(self, key: str) -> None:
        with self._lock:
            self._pending.discard(key)

    def _bump(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._stats[name] += amount
