"""
Tests for status reconciliation and the background sweep.
"""
import os

import pytest

from hls_relay.reconciler import Reconciler


class StubSupervisor:
    """Live process table stand-in."""

    def __init__(self, live=()):
        self.live = set(live)

    def is_live(self, stream_id):
        return stream_id in self.live


def _touch(path):
    with open(path, "wb") as f:
        f.write(b"\x47" * 188)


def _make_output(store, stream_id, segments):
    _touch(store.playlist_path(stream_id))
    for i in range(segments):
        _touch(store.segment_pattern(stream_id) % i)


@pytest.fixture
def supervisor():
    return StubSupervisor()


@pytest.fixture
def reconciler(store, supervisor):
    rec = Reconciler(store, supervisor, interval=0.05)
    yield rec
    rec.stop()


class TestReconcile:

    def test_unknown_stream(self, reconciler):
        assert reconciler.reconcile("nope") is None

    def test_active_without_process_becomes_stopped(self, store, reconciler):
        store.write("s1", {"status": "active", "segment_count": 2})
        _make_output(store, "s1", 2)

        record = reconciler.reconcile("s1")

        assert record["status"] == "stopped"
        assert store.read("s1")["status"] == "stopped"

    def test_starting_with_playlist_and_segments_becomes_active(self, store, supervisor, reconciler):
        supervisor.live.add("s1")
        store.write("s1", {"status": "starting"})
        _make_output(store, "s1", 1)

        record = reconciler.reconcile("s1")

        assert record["status"] == "active"
        assert record["segment_count"] == 1
        assert record["playlist_size"] == 188
        assert record["playlist_created_at"].endswith("Z")
        assert store.read("s1") == record

    def test_starting_without_process_or_playlist_becomes_error(self, store, reconciler):
        store.write("s1", {"status": "starting"})
        assert reconciler.reconcile("s1")["status"] == "error"

    def test_active_with_empty_playlist_goes_back_to_starting(self, store, supervisor, reconciler):
        supervisor.live.add("s1")
        store.write("s1", {"status": "active", "segment_count": 4})
        _make_output(store, "s1", 0)

        record = reconciler.reconcile("s1")

        assert record["status"] == "starting"
        assert record["segment_count"] == 0

    def test_segment_count_refresh_keeps_status(self, store, supervisor, reconciler):
        supervisor.live.add("s1")
        store.write("s1", {"status": "active", "segment_count": 1, "playlist_created_at": "earlier"})
        _make_output(store, "s1", 3)

        record = reconciler.reconcile("s1")

        assert record["status"] == "active"
        assert record["segment_count"] == 3
        assert record["playlist_created_at"] == "earlier"

    def test_no_write_when_nothing_changed(self, store, supervisor, reconciler, monkeypatch):
        supervisor.live.add("s1")
        store.write("s1", {"status": "active", "segment_count": 2})
        _make_output(store, "s1", 2)

        writes = []
        monkeypatch.setattr(store, "write", lambda *args: writes.append(args))

        record = reconciler.reconcile("s1")

        assert record == {"status": "active", "segment_count": 2}
        assert writes == []

    def test_terminal_status_is_kept(self, store, supervisor, reconciler):
        supervisor.live.add("s1")
        store.write("s1", {"status": "error", "segment_count": 0, "error_message": "boom"})
        _make_output(store, "s1", 2)

        record = reconciler.reconcile("s1")

        assert record["status"] == "error"
        assert record["error_message"] == "boom"


class TestSweep:

    def test_sweep_updates_every_record(self, store, reconciler):
        store.write("a", {"status": "active"})
        store.write("b", {"status": "starting"})
        os.makedirs(os.path.join(store.hls_dir, "no-record"))

        assert reconciler.sweep() == 2
        assert store.read("a")["status"] == "stopped"
        assert store.read("b")["status"] == "error"

    def test_sweep_skips_unreadable_records(self, store, reconciler):
        store.write("bad", {})
        with open(store.metadata_path("bad"), "w") as f:
            f.write("{not json")
        store.write("good", {"status": "active"})

        assert reconciler.sweep() == 1
        assert store.read("good")["status"] == "stopped"

    def test_sweep_skips_non_object_record(self, store, reconciler):
        store.write("aaa", [1, 2])
        store.write("bbb", {"status": "active"})

        assert reconciler.sweep() == 1
        assert store.read("bbb")["status"] == "stopped"

    def test_reconcile_non_object_record_raises_value_error(self, store, reconciler):
        store.write("aaa", [1, 2])
        with pytest.raises(ValueError):
            reconciler.reconcile("aaa")

    def test_sweep_on_missing_root(self, reconciler):
        assert reconciler.sweep() == 0

    def test_background_thread(self, store, reconciler, wait):
        store.write("s1", {"status": "active"})

        reconciler.start()
        assert reconciler.is_running()
        assert wait(lambda: store.read("s1")["status"] == "stopped", timeout=2.0)

        reconciler.stop()
        assert not reconciler.is_running()

    def test_start_twice_keeps_one_thread(self, reconciler):
        reconciler.start()
        first = reconciler._sweep_thread
        reconciler.start()
        assert reconciler._sweep_thread is first
