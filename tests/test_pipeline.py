"""
tests/test_pipeline.py - End-to-end record processing

Key Properties Tested:
    - Exact key layout and decodable values for a full record
    - Whole-record rejection: bad input persists nothing
    - Storage failures persist nothing and surface StorageError
    - Index failures are non-fatal and queued for reindex
    - Overwrite behaviour for repeated subjects and shared field names
"""

import json
import logging
from unittest.mock import MagicMock

import pytest

from pattern_monitor.codec import decode, encode
from pattern_monitor.errors import (
    IndexUpdateError,
    ParseError,
    StorageError,
    UnsupportedValueError,
)
from pattern_monitor.index import PostingIndex
from pattern_monitor.operators import bundle, similarity
from pattern_monitor.pipeline import PatternMonitor, bundle_key, semantic_key
from pattern_monitor.storage import InMemoryStore, KeyValueStore, RetryingStore
from pattern_monitor.types import StoreConfig

from conftest import QUAKE_BODY

SUBJECT = "pattern.monitor.integration"


class FlakyIndex(PostingIndex):
    """Rejects inserts for chosen ids until cleared."""

    def __init__(self, dimension, fail_ids=()):
        super().__init__(dimension)
        self.fail_ids = set(fail_ids)

    def insert(self, vector_id, vector):
        if vector_id in self.fail_ids:
            raise IndexUpdateError(vector_id, "simulated failure")
        super().insert(vector_id, vector)


class BrokenStore(InMemoryStore):
    def set_many(self, items):
        raise ConnectionError("store unreachable")


# =============================================================================
# KEY LAYOUT
# =============================================================================


class TestKeys:

    def test_key_helpers(self):
        assert semantic_key("depth_km") == "semantic:v1:depth_km"
        assert bundle_key("pattern.monitor.x") == "bundle:v1:pattern.monitor.x"


# =============================================================================
# END-TO-END
# =============================================================================


class TestEndToEnd:

    def test_full_record(self, monitor, store, encoder):
        outcome = monitor.process_record(SUBJECT, QUAKE_BODY)

        assert store.keys() == sorted(
            [
                "semantic:v1:event",
                "semantic:v1:magnitude",
                "semantic:v1:location",
                "semantic:v1:depth_km",
                f"bundle:v1:{SUBJECT}",
            ]
        )
        for key in store.keys():
            decode(store.get(key))

        payload = json.loads(QUAKE_BODY)
        fresh = bundle(
            [encoder.encode_field(name, value) for name, value in payload.items()],
            encoder.space,
        )
        stored = decode(store.get(bundle_key(SUBJECT)))
        sim = similarity(stored, fresh)
        assert sim >= 0.95, f"Stored bundle should match a fresh bundle, got sim={sim}"

        assert outcome.persisted
        assert outcome.field_keys == [
            "semantic:v1:event",
            "semantic:v1:magnitude",
            "semantic:v1:location",
            "semantic:v1:depth_km",
        ]
        assert outcome.bytes_written == sum(len(store.get(k)) for k in store.keys())

    def test_field_vectors_stored(self, monitor, encoder):
        monitor.process_record(SUBJECT, QUAKE_BODY)
        assert monitor.load_vector("semantic:v1:event") == encoder.encode_field(
            "event", "earthquake"
        )

    def test_everything_indexed(self, monitor):
        outcome = monitor.process_record(SUBJECT, QUAKE_BODY)
        assert sorted(monitor.index.ids()) == sorted(outcome.keys)
        assert monitor.pending_reindex == set()

    def test_query_finds_record(self, monitor):
        monitor.process_record(SUBJECT, QUAKE_BODY)
        monitor.process_record("other", b'{"event": "flood", "river": "Danube"}')

        query = monitor.encode_query(json.loads(QUAKE_BODY))
        hits = monitor.search(query, top_k=3)
        assert hits[0].vector_id == bundle_key(SUBJECT)
        assert hits[0].similarity == 1.0

    def test_partial_query_prefers_matching_subject(self, monitor):
        monitor.process_record("quakes", b'{"event": "earthquake", "region": "Chile"}')
        monitor.process_record("floods", b'{"event": "flood", "region": "Bavaria"}')

        hits = monitor.search(monitor.encode_query(b'{"region": "Chile"}'), top_k=5)
        bundles = [h.vector_id for h in hits if h.vector_id.startswith("bundle:")]
        assert bundles[0] == "bundle:v1:quakes"

    def test_empty_query_rejected(self, monitor):
        with pytest.raises(ParseError):
            monitor.encode_query({})


# =============================================================================
# REJECTION
# =============================================================================


class TestRejection:

    def test_bare_string(self, monitor, store):
        with pytest.raises(ParseError):
            monitor.process_record(SUBJECT, b'"hello"')
        assert len(store) == 0
        assert len(monitor.index) == 0

    def test_nested_value_rejects_whole_record(self, monitor, store):
        with pytest.raises(UnsupportedValueError):
            monitor.process_record(SUBJECT, b'{"event":"x","nested":{"a":1}}')
        assert len(store) == 0
        assert len(monitor.index) == 0

    def test_empty_object_skipped(self, monitor, store, caplog):
        with caplog.at_level(logging.WARNING, logger="pattern_monitor.pipeline"):
            outcome = monitor.process_record(SUBJECT, b"{}")
        assert not outcome.persisted
        assert outcome.keys == []
        assert len(store) == 0
        assert "empty JSON object" in caplog.text


# =============================================================================
# FAILURE HANDLING
# =============================================================================


class TestFailures:

    def test_storage_failure_persists_nothing(self, encoder, space):
        store = RetryingStore(BrokenStore(), StoreConfig(attempts=2, backoff_seconds=0.0))
        monitor = PatternMonitor(store=store, encoder=encoder)
        with pytest.raises(StorageError):
            monitor.process_record(SUBJECT, QUAKE_BODY)
        assert len(store.inner) == 0
        assert len(monitor.index) == 0

    def test_storage_failure_from_mock(self, encoder):
        store = MagicMock(spec=KeyValueStore)
        store.set_many.side_effect = StorageError("down")
        monitor = PatternMonitor(store=store, encoder=encoder)
        with pytest.raises(StorageError):
            monitor.process_record(SUBJECT, QUAKE_BODY)
        store.set_many.assert_called_once()
        assert len(monitor.index) == 0

    def test_index_failure_is_not_fatal(self, store, encoder, space):
        index = FlakyIndex(space.dimension, fail_ids={"semantic:v1:magnitude"})
        monitor = PatternMonitor(store=store, encoder=encoder, index=index)

        outcome = monitor.process_record(SUBJECT, QUAKE_BODY)
        assert outcome.persisted
        assert outcome.reindex_pending == ["semantic:v1:magnitude"]
        assert store.exists("semantic:v1:magnitude")
        assert "semantic:v1:magnitude" not in index
        assert monitor.pending_reindex == {"semantic:v1:magnitude"}

        assert monitor.reindex_pending() == 0
        index.fail_ids.clear()
        assert monitor.reindex_pending() == 1
        assert "semantic:v1:magnitude" in index
        assert monitor.pending_reindex == set()

    def test_reindex_drops_missing_keys(self, store, encoder, space):
        index = FlakyIndex(space.dimension, fail_ids={"semantic:v1:event"})
        monitor = PatternMonitor(store=store, encoder=encoder, index=index)
        monitor.process_record(SUBJECT, QUAKE_BODY)
        store.delete("semantic:v1:event")

        assert monitor.reindex_pending() == 0
        assert monitor.pending_reindex == set()


# =============================================================================
# OVERWRITE SEMANTICS
# =============================================================================


class TestOverwrite:

    def test_same_subject_replaces_bundle(self, monitor, encoder):
        monitor.process_record("s", b'{"event": "earthquake"}')
        monitor.process_record("s", b'{"event": "flood"}')
        stored = monitor.load_vector(bundle_key("s"))
        assert stored == bundle([encoder.encode_field("event", "flood")], encoder.space)

    def test_index_resyncs_from_store(self, monitor, encoder):
        """The index can trail the store for a subject; reloading the key resyncs it."""
        monitor.process_record("s", b'{"event": "earthquake"}')
        flood = bundle([encoder.encode_field("event", "flood")], encoder.space)
        monitor.store.set(bundle_key("s"), encode(flood))
        assert monitor.index.get(bundle_key("s")) != flood

        monitor.index.insert(bundle_key("s"), monitor.load_vector(bundle_key("s")))
        assert monitor.index.get(bundle_key("s")) == flood
        hits = monitor.search(flood, top_k=1)
        assert hits[0].vector_id == bundle_key("s")
        assert hits[0].similarity == 1.0

    def test_field_keys_are_shared_across_subjects(self, monitor, store, encoder):
        """semantic:v1:{field} is not subject-scoped; the latest record owns it."""
        monitor.process_record("first", b'{"event": "earthquake"}')
        monitor.process_record("second", b'{"event": "flood"}')

        assert monitor.load_vector("semantic:v1:event") == encoder.encode_field("event", "flood")
        assert store.exists(bundle_key("first"))
        assert store.exists(bundle_key("second"))
        assert len(store.keys("semantic:v1:*")) == 1


# =============================================================================
# MESSAGE HANDLER
# =============================================================================


class TestHandleMessage:

    def test_success(self, monitor):
        outcome = monitor.handle_message(SUBJECT, QUAKE_BODY)
        assert outcome is not None and outcome.persisted

    def test_bad_messages_are_dropped(self, monitor, store, caplog):
        with caplog.at_level(logging.WARNING, logger="pattern_monitor.pipeline"):
            assert monitor.handle_message(SUBJECT, b'"hello"') is None
            assert monitor.handle_message(SUBJECT, b'{"a": [1]}') is None
        assert len(store) == 0
        assert "skipping message" in caplog.text
        assert monitor.stats["records_skipped"] == 2

    def test_surrogate_escapes_are_dropped(self, monitor, store):
        assert monitor.handle_message(SUBJECT, b'{"place": "\\ud800"}') is None
        assert monitor.handle_message(SUBJECT, b'{"\\udc00": 1}') is None
        assert len(store) == 0
        assert len(monitor.index) == 0
        assert monitor.stats["records_skipped"] == 2

    def test_storage_errors_propagate(self, encoder):
        store = MagicMock(spec=KeyValueStore)
        store.set_many.side_effect = StorageError("down")
        monitor = PatternMonitor(store=store, encoder=encoder)
        with pytest.raises(StorageError):
            monitor.handle_message(SUBJECT, QUAKE_BODY)
        assert monitor.stats["records_failed"] == 1


# =============================================================================
# BATCH & PROBE
# =============================================================================


class TestBatch:

    def test_process_many(self, monitor, store):
        report = monitor.process_many(
            [
                ("a", b'{"event": "earthquake"}'),
                ("b", b'"hello"'),
                ("c", b'{"event": "flood", "level": 3}'),
            ],
            max_workers=3,
        )
        assert report.succeeded == 2
        assert report.outcomes[1] is None
        assert [s for s, _ in report.errors] == ["b"]
        assert isinstance(report.errors[0][1], ParseError)
        assert store.exists(bundle_key("a"))
        assert store.exists(bundle_key("c"))

    def test_probe_on_ingest(self, store, encoder):
        monitor = PatternMonitor(store=store, encoder=encoder, probe_on_ingest=True)
        outcome = monitor.process_record(SUBJECT, QUAKE_BODY)
        assert outcome.probe_hits[0].vector_id == "semantic:v1:event"
        assert outcome.probe_hits[0].similarity == 1.0

    def test_probe_skipped_for_single_field(self, store, encoder):
        monitor = PatternMonitor(store=store, encoder=encoder, probe_on_ingest=True)
        outcome = monitor.process_record(SUBJECT, b'{"event": "earthquake"}')
        assert outcome.probe_hits == []

    def test_stats(self, monitor):
        monitor.process_record(SUBJECT, QUAKE_BODY)
        stats = monitor.stats
        assert stats["records_processed"] == 1
        assert stats["keys_written"] == 5
        assert stats["indexed_vectors"] == 5

    def test_process_many_continues_past_surrogates(self, monitor, store):
        report = monitor.process_many(
            [
                ("a", b'{"place": "\\ud800"}'),
                ("b", b'{"event": "flood"}'),
            ],
            max_workers=2,
        )
        assert report.succeeded == 1
        assert isinstance(report.errors[0][1], UnsupportedValueError)
        assert store.keys() == ["bundle:v1:b", "semantic:v1:event"]
