"""Shared pytest fixtures: fake clock, fake HTTP, fake ffmpeg process and encoder."""

import io
import json
import subprocess
import threading
import time

import pytest

from counterstream.config import StreamConfig
from counterstream.errors import FetchError

CHANNEL_URL = "https://api.test/youtube-channel-counter/user/UC-test"
STREAM_URL = "https://api.test/youtube-stream-counter/user/live-test"


# =============================================================================
# Documents
# =============================================================================

def channel_document(name="Test", pfp="http://x/a.png", subscribers=100, views=200, videos=3):
    return json.dumps({
        "user": [
            {"value": "name", "count": name},
            {"value": "pfp", "count": pfp},
        ],
        "counts": [
            {"value": "subscribers", "count": subscribers},
            {"value": "views", "count": views},
            {"value": "videos", "count": videos},
        ],
    }).encode()


def stream_document(viewers=42, likes=7):
    return json.dumps({
        "counts": [
            {"value": "viewers", "count": viewers},
            {"value": "likes", "count": likes},
        ],
    }).encode()


def wait_until(predicate, timeout=2.0):
    """Poll predicate until it is true or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


# =============================================================================
# Fakes
# =============================================================================

class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeHttp:
    """Maps URL -> bytes, or an exception instance to raise."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self.closed = False

    def get(self, url):
        self.calls.append(url)
        response = self.responses.get(url, FetchError(f"{url} -> no route"))
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


class FakeStdin:
    def __init__(self, process):
        self.process = process
        self.chunks = []
        self.closed = False
        self.error = None
        self.gate = None  # threading.Event; write blocks until set
        self.write_started = threading.Event()

    def write(self, data):
        self.write_started.set()
        if self.gate is not None:
            self.gate.wait(2.0)
        if self.error is not None:
            raise self.error
        self.chunks.append(bytes(data))
        return len(data)

    def flush(self):
        pass

    def close(self):
        self.closed = True
        if self.process.exit_on_eof:
            self.process.returncode = 0


class FakeProcess:
    """Stands in for subprocess.Popen: never blocks, records signals."""

    def __init__(self, stderr=b"", exit_on_eof=True, exit_on_term=True, push=True):
        self.stdin = FakeStdin(self) if push else None
        self.stderr = io.BytesIO(stderr)
        self.exit_on_eof = exit_on_eof
        self.exit_on_term = exit_on_term
        self.returncode = None
        self.signals = []

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            raise subprocess.TimeoutExpired("ffmpeg", timeout)
        return self.returncode

    def terminate(self):
        self.signals.append("TERM")
        if self.exit_on_term:
            self.returncode = -15

    def kill(self):
        self.signals.append("KILL")
        self.returncode = -9


class FakePopen:
    """Popen replacement handing out prepared FakeProcess objects."""

    def __init__(self, *processes):
        self.processes = list(processes)
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append((command, kwargs))
        return self.processes.pop(0)


class FakeEncoder:
    """EncoderProcess stand-in for driver and app tests."""

    def __init__(self, accept=True):
        self.accept = accept
        self.starts = 0
        self.stops = 0
        self.frames = []
        self.alive = False
        self.returncode = None
        self.start_error = None

    def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.starts += 1
        self.alive = True
        self.returncode = None

    def is_alive(self):
        return self.alive

    def send_frame(self, data):
        if not self.accept:
            return False
        self.frames.append(data)
        return True

    def crash(self, code=1):
        self.alive = False
        self.returncode = code

    def stop(self):
        self.stops += 1
        self.alive = False
        return 0


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "play.mp3"
    path.write_bytes(b"ID3")
    return path


@pytest.fixture
def make_config(tmp_path, audio_file):
    def factory(**overrides):
        values = dict(
            width=320,
            height=180,
            fps=30,
            api_base="https://api.test",
            channel_id="UC-test",
            stream_id="live-test",
            stream_url="rtmp://ingest.test/live2/key",
            audio_file=str(audio_file),
            frame_path=str(tmp_path / "frame.png"),
            restart_delay=5.0,
            max_restarts=2,
        )
        values.update(overrides)
        return StreamConfig(**values).validate()
    return factory


@pytest.fixture
def fake_encoder():
    return FakeEncoder()
