"""
Pytest configuration and fixtures for hls_relay tests.

ffmpeg is replaced by tests/fake_ffmpeg.py, run with the current interpreter.
"""
import os
import sys
import time

import pytest

from hls_relay.config import StreamConfig
from hls_relay.ffmpeg import FFmpegRunner
from hls_relay.manager import StreamManager
from hls_relay.metadata import MetadataStore

FAKE_FFMPEG = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fake_ffmpeg.py")


class FakeRunner(FFmpegRunner):
    """Builds the real ffmpeg command for inspection, but runs the fake script."""

    def __init__(self, config, executable=sys.executable):
        super().__init__(config)
        self.executable = executable
        self.commands = []

    def build_command(self, rtsp_url, preset, delete_segments, playlist_path, segment_pattern):
        self.commands.append(
            super().build_command(rtsp_url, preset, delete_segments, playlist_path, segment_pattern)
        )
        mode = rtsp_url.rstrip("/").rsplit("/", 1)[-1]
        return [self.executable, FAKE_FFMPEG, mode, playlist_path, segment_pattern]


@pytest.fixture
def config(tmp_path):
    """Config with short timings and everything under tmp_path."""
    return StreamConfig(
        hls_dir=str(tmp_path / "hls_streams"),
        startup_delay=0.05,
        poll_interval=0.05,
        startup_timeout=5.0,
        reconcile_interval=0.1,
        adopt_orphans=False,
        log_dir="",
    )


@pytest.fixture
def store(config):
    return MetadataStore(config.hls_dir)


@pytest.fixture
def runner(config):
    return FakeRunner(config)


@pytest.fixture
def manager(config, runner):
    """A StreamManager running the fake ffmpeg; all processes stopped afterwards."""
    mgr = StreamManager(config, ffmpeg_runner=runner)
    yield mgr
    mgr.stop()


def wait_until(predicate, timeout=5.0, interval=0.02):
    """Poll predicate until it is truthy or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def wait():
    return wait_until
