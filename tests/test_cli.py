"""
Tests for the command-line front end.
"""
import argparse
import json
import threading

import pytest

from conftest import FakeRunner
from hls_relay import cli
from hls_relay.identity import derive_stream_id
from hls_relay.manager import StreamManager


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "streams": {
            "hls_dir": str(tmp_path / "hls_streams"),
            "log_dir": "",
            "adopt_orphans": False,
            "startup_delay": 0.05,
            "poll_interval": 0.05,
            "startup_timeout": 5,
            "reconcile_interval": 0.1,
        }
    }), encoding="utf-8")
    return str(path)


@pytest.fixture
def managers(monkeypatch):
    """Every manager the CLI builds, running the fake ffmpeg."""
    created = []

    def fake_get_stream_manager(config):
        mgr = StreamManager(config, ffmpeg_runner=FakeRunner(config))
        created.append(mgr)
        return mgr

    monkeypatch.setattr(cli, "get_stream_manager", fake_get_stream_manager)
    yield created
    for mgr in created:
        mgr.stop()


@pytest.fixture
def run(config_file, managers, capsys):
    def _run(*argv, stop_event=None):
        code = cli.main(["--config", config_file, *argv], stop_event=stop_event)
        return code, capsys.readouterr().out
    return _run


def seed(run, managers, stream_id, record):
    # build a manager through the CLI so the store points at the tmp dir
    run("list")
    managers[-1].store.write(stream_id, record)


class TestParseFields:

    def test_json_and_plain_values(self):
        assert cli._parse_fields(["count=3", "ok=true", "note=hello world"]) == {
            "count": 3, "ok": True, "note": "hello world"
        }

    @pytest.mark.parametrize("pair", ["novalue", "=value"])
    def test_bad_pair(self, pair):
        with pytest.raises(argparse.ArgumentTypeError):
            cli._parse_fields([pair])


class TestCommands:

    def test_status_unknown_stream(self, run):
        code, out = run("status", "0" * 32)
        assert code == 1
        assert json.loads(out) == {"error": "Stream not found"}

    def test_status_reconciles(self, run, managers):
        seed(run, managers, "s1", {"stream_id": "s1", "status": "active"})
        code, out = run("status", "s1")
        assert code == 0
        assert json.loads(out)["metadata"]["status"] == "stopped"

    def test_update(self, run, managers):
        seed(run, managers, "s1", {"stream_id": "s1", "status": "active"})
        code, out = run("update", "s1", "stopped", "reason=maintenance", "retries=2")
        assert code == 0
        metadata = json.loads(out)["metadata"]
        assert metadata["status"] == "stopped"
        assert metadata["reason"] == "maintenance"
        assert metadata["retries"] == 2

    def test_update_unknown_stream(self, run):
        code, _ = run("update", "missing", "stopped")
        assert code == 1

    def test_update_bad_field(self, run, managers):
        seed(run, managers, "s1", {"status": "active"})
        with pytest.raises(SystemExit):
            run("update", "s1", "stopped", "oops")

    def test_list_and_debug(self, run, managers):
        seed(run, managers, "s1", {"stream_id": "s1", "status": "stopped", "quality": "720p", "type": "Rolling"})
        with open(managers[-1].store.playlist_path("s1"), "w") as f:
            f.write("#EXTM3U\n")

        code, out = run("list")
        assert code == 0
        listing = json.loads(out)
        assert [s["id"] for s in listing["streams"]] == ["s1"]
        assert listing["streams"][0]["hls_url"] == "/hls/s1/index.m3u8"
        assert listing["active_streams"] == []

        code, out = run("debug")
        assert code == 0
        info = json.loads(out)
        assert info["total_streams"] == 1
        assert info["debug_info"][0]["has_playlist"] is True

    def test_delete(self, run, managers):
        seed(run, managers, "s1", {"status": "stopped"})
        code, out = run("delete", "s1")
        assert code == 0
        assert json.loads(out) == {"success": True}

        code, _ = run("delete", "s1")
        assert code == 1


class TestStart:

    def test_start_and_stop(self, run):
        stop = threading.Event()
        stop.set()

        code, out = run("start", "rtsp://host/cam1", "--quality", "720p", stop_event=stop)

        assert code == 0
        assert derive_stream_id("rtsp://host/cam1", "720p", True) in out
        assert '"status": "stopped"' in out

    def test_start_archive(self, run):
        stop = threading.Event()
        stop.set()

        code, out = run("start", "rtsp://host/cam1", "--quality", "480p", "--archive", stop_event=stop)

        assert code == 0
        assert derive_stream_id("rtsp://host/cam1", "480p", False) in out

    def test_start_failure(self, run):
        code, out = run("start", "rtsp://host/auth", "--quality", "720p")
        assert code == 1
        assert "Authentication failed" in out

    def test_start_unsupported_quality(self, run):
        code, out = run("start", "rtsp://host/cam1", "--quality", "4k")
        assert code == 1
        assert "4k" in out
