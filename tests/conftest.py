"""
Pytest configuration for the rtvoice test suite.

Fakes for the aiohttp session, the aiortc peer connection and its data
channel live here so tests never touch the network.
"""

import asyncio
import inspect
import json
import logging

import pytest
from aiortc import RTCSessionDescription

from rtvoice.audio import LocalAudioTrack
from rtvoice.session import RealtimeSession

TEST_API_KEY = "sk-test"
TEST_EPHEMERAL_KEY = "ek_test_123"
TEST_ANSWER_SDP = "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\ns=answer\r\n"
TEST_OFFER_SDP = "v=0\r\no=- 2 2 IN IP4 0.0.0.0\r\ns=offer\r\n"

CREDENTIAL_BODY = json.dumps({"client_secret": {"value": TEST_EPHEMERAL_KEY, "expires_at": 1735689600}})


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


class FakeEmitter:
    """Minimal stand-in for the event emitter aiortc objects inherit from."""

    def __init__(self):
        self._handlers = {}

    def on(self, event, handler=None):
        if handler is None:
            def decorator(func):
                self.on(event, func)
                return func
            return decorator
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def emit(self, event, *args):
        for handler in list(self._handlers.get(event, [])):
            result = handler(*args)
            if inspect.isawaitable(result):
                asyncio.ensure_future(result)

    async def emit_async(self, event, *args):
        for handler in list(self._handlers.get(event, [])):
            result = handler(*args)
            if inspect.isawaitable(result):
                await result


class FakeDataChannel(FakeEmitter):
    def __init__(self, label, ordered=True):
        super().__init__()
        self.label = label
        self.ordered = ordered
        self.readyState = "connecting"
        self.sent = []

    def send(self, data):
        if self.readyState != "open":
            raise RuntimeError("channel not open")
        self.sent.append(data)

    def open(self):
        self.readyState = "open"
        self.emit("open")

    def receive(self, message):
        if isinstance(message, dict):
            message = json.dumps(message)
        self.emit("message", message)

    def close(self):
        self.readyState = "closed"
        self.emit("close")

    def sent_events(self):
        return [json.loads(data) for data in self.sent]


class FakePeerConnection(FakeEmitter):
    def __init__(self, configuration=None, fail_step=None):
        super().__init__()
        self.configuration = configuration
        self.fail_step = fail_step
        self.tracks = []
        self.channels = []
        self.localDescription = None
        self.remoteDescription = None
        self.connectionState = "new"
        self.closed = False

    def addTrack(self, track):
        self.tracks.append(track)

    def createDataChannel(self, label, ordered=True):
        channel = FakeDataChannel(label, ordered=ordered)
        self.channels.append(channel)
        return channel

    async def createOffer(self):
        if self.fail_step == "create offer":
            raise RuntimeError("no codecs")
        return RTCSessionDescription(sdp=TEST_OFFER_SDP, type="offer")

    async def setLocalDescription(self, description):
        if self.fail_step == "set local description":
            raise RuntimeError("bad offer")
        self.localDescription = description

    async def setRemoteDescription(self, description):
        if self.fail_step == "set remote description":
            raise ValueError("bad answer")
        self.remoteDescription = description

    async def close(self):
        self.closed = True
        self.connectionState = "closed"
        for channel in self.channels:
            if channel.readyState != "closed":
                channel.close()

    async def set_connection_state(self, state):
        self.connectionState = state
        await self.emit_async("connectionstatechange")


class PeerConnectionFactory:
    """Records every peer connection the session builds."""

    def __init__(self, fail_step=None):
        self.fail_step = fail_step
        self.created = []

    def __call__(self, configuration=None):
        pc = FakePeerConnection(configuration=configuration, fail_step=self.fail_step)
        self.created.append(pc)
        return pc

    @property
    def last(self):
        return self.created[-1]


class FakeResponse:
    """Holds the raw body; ``text()`` decodes strictly, like aiohttp."""

    def __init__(self, status, body):
        self.status = status
        self._body = body.encode("utf-8") if isinstance(body, str) else body

    async def read(self):
        return self._body

    async def text(self, encoding=None):
        return self._body.decode(encoding or "utf-8")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _PendingPost:
    def __init__(self, http, index, outcome):
        self._http = http
        self._index = index
        self._outcome = outcome

    async def __aenter__(self):
        gate = self._http.gate
        if gate is not None and self._index >= self._http.gate_from:
            self._http.waiting.set()
            await gate.wait()
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        status, body = self._outcome
        return FakeResponse(status, body)

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeHttp:
    """aiohttp.ClientSession stand-in returning queued (status, body) pairs or raising queued errors.

    When ``gate`` is set, calls from index ``gate_from`` on wait for it.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.gate = None
        self.gate_from = 0
        self.waiting = asyncio.Event()
        self.closed = False

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        outcome = self.outcomes.pop(0)
        return _PendingPost(self, len(self.calls) - 1, outcome)

    async def close(self):
        self.closed = True


class FakeRemoteSink:
    def __init__(self):
        self.tracks = []
        self.stopped = 0

    async def start(self, track):
        self.tracks.append(track)

    async def stop(self):
        self.stopped += 1


async def drain():
    """Let queued callbacks and the dispatcher task run."""
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def pc_factory():
    return PeerConnectionFactory()


@pytest.fixture
def make_session(pc_factory):
    """Build a RealtimeSession wired to fakes."""

    def _make(http, **overrides):
        options = {
            "http": http,
            "audio_track_factory": LocalAudioTrack,
            "remote_sink": FakeRemoteSink(),
            "peer_connection_factory": pc_factory,
            "instructions": "Please assist the user.",
        }
        options.update(overrides)
        return RealtimeSession(TEST_API_KEY, **options)

    return _make
