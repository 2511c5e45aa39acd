"""Realtime session: connection lifecycle, event dispatch and observable state."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

import aiohttp
from aiortc import RTCPeerConnection

from .audio import LocalAudioTrack, MuteController, RemoteAudioSink, open_microphone
from .channel import EventChannel, OutboundEvent
from .config import Config
from .conversation import Conversation
from .credentials import DEFAULT_API_BASE, acquire_credential
from .errors import CredentialError, NegotiationError
from .events import ServerEventType, SessionUpdateEvent, build_session_update, extract_error_message
from .models import SessionStatus
from .transport import PeerSession, open_peer_session

logger = logging.getLogger(__name__)

StatusListener = Callable[[SessionStatus], None]

TRANSITIONS = {
    SessionStatus.DISCONNECTED: {SessionStatus.FETCHING_CREDENTIAL},
    SessionStatus.FETCHING_CREDENTIAL: {SessionStatus.CONNECTING, SessionStatus.ERROR, SessionStatus.DISCONNECTED},
    SessionStatus.CONNECTING: {SessionStatus.CONNECTED, SessionStatus.ERROR, SessionStatus.DISCONNECTED},
    SessionStatus.CONNECTED: {SessionStatus.DISCONNECTED, SessionStatus.ERROR},
    SessionStatus.ERROR: {SessionStatus.FETCHING_CREDENTIAL, SessionStatus.DISCONNECTED},
}


class _StaleAttempt(Exception):
    """The attempt was superseded by ``disconnect()`` while awaiting."""


class RealtimeSession:
    """One client's realtime voice session.

    Exposes the observable state (``status``, ``conversation``, ``is_muted``)
    and the commands ``connect()``, ``disconnect()`` and ``toggle_mute()``.
    Everything runs on the event loop that calls ``connect()``.
    """

    def __init__(
        self,
        api_key: str,
        *,
        http: Optional[aiohttp.ClientSession] = None,
        base_url: str = DEFAULT_API_BASE,
        session_model: str = "gpt-4o-mini-realtime-preview",
        realtime_model: str = "gpt-4o-realtime-preview-2024-12-17",
        voice: str = "verse",
        session_update: Optional[SessionUpdateEvent] = None,
        ice_servers: Optional[list[str]] = None,
        instructions: Optional[str] = None,
        escalate_channel_errors: bool = False,
        audio_track_factory: Callable[[], LocalAudioTrack] = open_microphone,
        remote_sink: Optional[RemoteAudioSink] = None,
        peer_connection_factory: Callable[..., Any] = RTCPeerConnection,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.session_model = session_model
        self.realtime_model = realtime_model
        self.voice = voice
        self.session_update = session_update or build_session_update()
        self.ice_servers = ice_servers or []
        self.instructions = instructions
        self.escalate_channel_errors = escalate_channel_errors

        self.conversation = Conversation()
        self.mute = MuteController()
        self.last_error: Optional[str] = None

        self._http = http
        self._owns_http = http is None
        self._audio_track_factory = audio_track_factory
        self._remote_sink = remote_sink or RemoteAudioSink()
        self._peer_connection_factory = peer_connection_factory

        self._status = SessionStatus.DISCONNECTED
        self._status_listeners: List[StatusListener] = []
        self._attempt = 0
        self._peer: Optional[PeerSession] = None
        self._channel: Optional[EventChannel] = None
        self._inbound: Optional[asyncio.Queue] = None
        self._dispatch_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, **overrides: Any) -> "RealtimeSession":
        """Build a session from ``Config``; keyword arguments win over it."""
        options: dict[str, Any] = {
            "base_url": Config.OPENAI_API_BASE,
            "session_model": Config.SESSION_MODEL,
            "realtime_model": Config.REALTIME_MODEL,
            "voice": Config.VOICE,
            "session_update": build_session_update(
                threshold=Config.VAD_THRESHOLD,
                prefix_padding_ms=Config.VAD_PREFIX_PADDING_MS,
                silence_duration_ms=Config.VAD_SILENCE_DURATION_MS,
            ),
            "ice_servers": Config.ICE_SERVERS,
            "instructions": Config.INSTRUCTIONS,
            "escalate_channel_errors": Config.ESCALATE_CHANNEL_ERRORS,
            "audio_track_factory": lambda: open_microphone(Config.MIC_DEVICE, Config.MIC_FORMAT),
            "remote_sink": RemoteAudioSink(Config.RECORD_PATH),
        }
        options.update(overrides)
        return cls(Config.OPENAI_API_KEY, **options)

    async def __aenter__(self) -> "RealtimeSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # Observable state

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_muted(self) -> bool:
        return self.mute.is_muted

    @property
    def is_channel_open(self) -> bool:
        return self._channel is not None and self._channel.is_open

    def add_status_listener(self, listener: StatusListener) -> None:
        """Register a callback invoked with every new status."""
        self._status_listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        if listener in self._status_listeners:
            self._status_listeners.remove(listener)

    # Commands

    async def connect(self) -> None:
        """
        Run one connection attempt to completion.

        Does nothing unless the session is ``disconnected`` or in ``error``.
        Credential and negotiation failures end in ``error`` with the cause
        in ``last_error``; they are not raised.
        """
        if self._status not in (SessionStatus.DISCONNECTED, SessionStatus.ERROR):
            logger.debug("connect() ignored while %s", self._status.value)
            return

        self._attempt += 1
        attempt = self._attempt
        self.last_error = None
        self._set_status(SessionStatus.FETCHING_CREDENTIAL)

        try:
            http = self._ensure_http()
            credential = await acquire_credential(
                http,
                self.api_key,
                self.session_model,
                self.voice,
                base_url=self.base_url,
            )
            self._ensure_current(attempt)

            self._set_status(SessionStatus.CONNECTING)
            peer = self._open_peer(attempt)
            await peer.negotiate(http, credential, self.realtime_model, base_url=self.base_url)
            self._ensure_current(attempt)

            self._set_status(SessionStatus.CONNECTED)
            logger.info("Connected to %s", self.realtime_model)
        except _StaleAttempt:
            logger.debug("Discarding completion of superseded attempt %d", attempt)
        except (CredentialError, NegotiationError) as error:
            if attempt != self._attempt:
                logger.debug("Discarding failure of superseded attempt %d: %s", attempt, error)
                return
            await self._teardown()
            self._fail(str(error))
        except Exception as error:
            if attempt != self._attempt:
                logger.debug("Discarding failure of superseded attempt %d: %s", attempt, error)
                return
            logger.exception("Unexpected error during connect")
            await self._teardown()
            self._fail(f"Unexpected error: {error}")

    async def disconnect(self) -> None:
        """Tear down the current attempt, clear the transcript and go ``disconnected``.

        Safe in any state; in-flight completions of the old attempt are dropped.
        """
        self._attempt += 1
        await self._teardown()
        self.conversation.clear()
        self._set_status(SessionStatus.DISCONNECTED)

    async def aclose(self) -> None:
        """Disconnect and release the HTTP session if this object created it."""
        await self.disconnect()
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    def toggle_mute(self) -> bool:
        """Flip the microphone mute state; returns the new state."""
        return self.mute.toggle()

    def send_event(self, event: OutboundEvent) -> bool:
        """Send a client event on the events channel. Returns False if nothing was sent."""
        if self._channel is None:
            logger.debug("No events channel, dropping outbound event")
            return False
        return self._channel.send(event)

    def request_response(
        self,
        modalities: Optional[List[str]] = None,
        instructions: Optional[str] = None,
    ) -> bool:
        """Send ``response.create`` asking the model to respond."""
        if self._channel is None:
            return False
        return self._channel.request_response(
            modalities=modalities,
            instructions=instructions if instructions is not None else self.instructions,
        )

    # Internals

    def _ensure_http(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self._http

    def _ensure_current(self, attempt: int) -> None:
        if attempt != self._attempt:
            raise _StaleAttempt()

    def _open_peer(self, attempt: int) -> PeerSession:
        try:
            audio_track = self._audio_track_factory()
        except Exception as error:
            raise NegotiationError("open microphone", str(error) or type(error).__name__) from error

        async def on_state_change(state: str) -> None:
            await self._on_connection_state(attempt, state)

        try:
            peer = open_peer_session(
                audio_track,
                ice_servers=self.ice_servers,
                on_state_change=on_state_change,
                on_track=self._remote_sink.start,
                peer_connection_factory=self._peer_connection_factory,
            )
        except Exception:
            audio_track.stop()
            raise
        self._peer = peer
        self.mute.attach(audio_track)

        queue: asyncio.Queue = asyncio.Queue()
        self._inbound = queue
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(queue))
        self._channel = EventChannel(
            peer.channel,
            on_event=queue.put_nowait,
            session_update=self.session_update,
        )
        return peer

    async def _dispatch_loop(self, queue: asyncio.Queue) -> None:
        """Apply inbound events one at a time, in arrival order."""
        while self._inbound is queue:
            event = await queue.get()
            if self._inbound is not queue:
                break
            try:
                await self._handle_event(event)
            except Exception:
                logger.exception("Error handling %s event", event.get("type"))

    async def _handle_event(self, event: dict) -> None:
        event_type = event["type"]
        if event_type == ServerEventType.ERROR.value:
            if self.escalate_channel_errors:
                self._attempt += 1
                await self._teardown()
                self._fail(f"Server error: {extract_error_message(event) or 'unknown error'}")
            return
        if event_type in (ServerEventType.SESSION_CREATED.value, ServerEventType.SESSION_UPDATED.value):
            logger.debug("Received %s", event_type)
            return
        self.conversation.apply_event(event)

    async def _on_connection_state(self, attempt: int, state: str) -> None:
        if attempt != self._attempt or state not in ("failed", "closed"):
            return
        if self._status is not SessionStatus.CONNECTED:
            return
        logger.warning("Transport %s, disconnecting", state)
        await self.disconnect()

    async def _teardown(self) -> None:
        channel, self._channel = self._channel, None
        peer, self._peer = self._peer, None
        task, self._dispatch_task = self._dispatch_task, None
        self._inbound = None

        if channel is not None:
            channel.close()
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self.mute.attach(None)
        await self._remote_sink.stop()
        if peer is not None:
            await peer.close()

    def _fail(self, reason: str) -> None:
        self.last_error = reason
        logger.error("Connection attempt failed: %s", reason)
        self._set_status(SessionStatus.ERROR)

    def _set_status(self, status: SessionStatus) -> None:
        previous = self._status
        if status is previous:
            return
        if status not in TRANSITIONS[previous]:
            logger.warning("Ignoring invalid transition %s -> %s", previous.value, status.value)
            return
        self._status = status
        logger.info("Status: %s -> %s", previous.value, status.value)
        for listener in list(self._status_listeners):
            listener(status)
