"""Pytest configuration and fixtures for Talk2Me tests."""

import asyncio
import base64
import json
import logging
import time
from types import SimpleNamespace
from unittest.mock import Mock, patch

import aiohttp
import numpy as np
import pytest

from talk2me.bus import EventBus
from talk2me.models.audio import AudioFrame


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def make_frame(level: float, size: int = 1024, frame_number: int = 0) -> AudioFrame:
    """Constant-amplitude frame whose RMS equals abs(level)."""
    samples = np.full(size, level, dtype=np.float32)
    return AudioFrame(samples=samples, timestamp=time.time(), frame_number=frame_number)


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCapture:
    """AudioCapture double that replays scripted frames.

    Each read_pending() call returns the next scripted batch and advances the
    attached clock by one check interval.
    """

    def __init__(self, clock: FakeClock = None, tick_seconds: float = 0.15, error=None):
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.error = error
        self.batches = []
        self.is_active = False
        self.acquire_count = 0
        self.release_count = 0

    def script(self, levels):
        """Queue one single-frame batch per level."""
        for i, level in enumerate(levels):
            self.batches.append([make_frame(level, frame_number=i + 1)])

    async def acquire(self):
        self.acquire_count += 1
        if self.error is not None:
            raise self.error
        self.is_active = True

    def read_pending(self):
        if self.clock is not None:
            self.clock.advance(self.tick_seconds)
        if not self.batches:
            return []
        return self.batches.pop(0)

    def release(self):
        if self.is_active:
            self.release_count += 1
        self.is_active = False


class FakeTransport:
    """Transport double recording every outbound frame."""

    def __init__(self, connected: bool = True):
        self.is_connected = connected
        self.url = "ws://test"
        self.sent_json = []
        self.sent_bytes = []

    async def send_json(self, event, data=None):
        if not self.is_connected:
            return False
        self.sent_json.append((event, data))
        return True

    async def send_bytes(self, data):
        if not self.is_connected:
            return False
        self.sent_bytes.append(data)
        return True

    def events(self):
        return [event for event, _ in self.sent_json]


class FakePlayer:
    """AudioPlayer double.

    With ``blocking=True`` every play() waits until release() is called, so a
    test controls exactly when each item finishes.
    """

    def __init__(self, blocking: bool = False, fail_on=()):
        self.blocking = blocking
        self.fail_on = set(fail_on)
        self.started = []
        self.finished = []
        self.cancelled = []
        self._gates = []

    async def play(self, payload: bytes) -> None:
        self.started.append(payload)
        if payload in self.fail_on:
            raise RuntimeError(f"cannot play {payload!r}")
        if self.blocking:
            gate = asyncio.Event()
            self._gates.append(gate)
            try:
                await gate.wait()
            except asyncio.CancelledError:
                self.cancelled.append(payload)
                raise
        self.finished.append(payload)

    def release(self) -> None:
        """Let the oldest blocked play() return."""
        self._gates.pop(0).set()


class FakeWebSocket:
    """aiohttp ClientWebSocketResponse double fed from a queue."""

    def __init__(self):
        self.closed = False
        self.sent_str = []
        self.sent_bytes = []
        self._incoming = asyncio.Queue()

    def feed_text(self, payload: str) -> None:
        self._incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=payload))

    def feed_close(self) -> None:
        """Simulate the server closing the connection."""
        self._incoming.put_nowait(None)

    async def send_str(self, data: str) -> None:
        self.sent_str.append(data)

    async def send_bytes(self, data: bytes) -> None:
        self.sent_bytes.append(data)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def exception(self):
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._incoming.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        return msg


class FakeSession:
    """aiohttp ClientSession double handing out FakeWebSockets."""

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.sockets = []
        self.connect_urls = []
        self.closed = False

    async def ws_connect(self, url):
        self.connect_urls.append(url)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise aiohttp.ClientConnectionError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    async def close(self):
        self.closed = True


def server_event(event: str, **data) -> str:
    """Encode an inbound server frame."""
    return json.dumps({"event": event, "data": data})


def b64(payload: bytes) -> str:
    return base64.b64encode(payload).decode("ascii")


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until predicate() is true."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def bus():
    """Fresh event bus with its own topic tree."""
    return EventBus()


@pytest.fixture
def recorded_events(bus):
    """Collect events published on a topic: recorded_events(topic) -> list."""
    subscriptions = []

    def record(topic):
        events = []

        def listener(event):
            events.append(event)

        subscriptions.append(bus.subscribe(topic, listener))
        return events

    yield record
    for subscription in subscriptions:
        subscription.unsubscribe()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def loud_frame():
    """Frame with RMS 0.05, above the default 0.01 threshold."""
    return make_frame(0.05)


@pytest.fixture
def quiet_frame():
    """Frame with RMS 0.001, below the default threshold."""
    return make_frame(0.001)


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_default_input_device_info.return_value = {"index": 0}

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }
