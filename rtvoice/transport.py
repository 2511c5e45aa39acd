"""Peer connection setup and SDP offer/answer exchange with the realtime API."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

from .audio import LocalAudioTrack
from .channel import EVENTS_CHANNEL_LABEL
from .credentials import DEFAULT_API_BASE
from .errors import NegotiationError
from .models import EphemeralCredential

logger = logging.getLogger(__name__)

StateCallback = Callable[[str], Any]
TrackCallback = Callable[[Any], Awaitable[None]]


async def exchange_offer(
    http: aiohttp.ClientSession,
    credential: EphemeralCredential,
    offer_sdp: str,
    model: str,
    *,
    base_url: str = DEFAULT_API_BASE,
) -> str:
    """
    Post the local SDP offer and return the answer SDP.

    Raises:
        NegotiationError: On network failure, a non-2xx status, or an answer that is empty or not UTF-8.
    """
    url = f"{base_url}/realtime"
    headers = {
        "Authorization": f"Bearer {credential.value}",
        "Content-Type": "application/sdp",
    }
    try:
        async with http.post(url, params={"model": model}, data=offer_sdp.encode("utf-8"), headers=headers) as resp:
            raw = await resp.read()
            status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as error:
        raise NegotiationError("send offer", str(error) or type(error).__name__) from error

    if not 200 <= status < 300:
        snippet = raw[:200].decode("utf-8", errors="replace")
        raise NegotiationError("send offer", f"status {status}: {snippet}")

    try:
        body = raw.decode("utf-8")
    except UnicodeDecodeError as error:
        raise NegotiationError("parse answer", "answer is not UTF-8") from error

    if not body.strip():
        raise NegotiationError("parse answer", "empty answer body")
    return body


class PeerSession:
    """Resources owned by one connection attempt.

    Created by ``open_peer_session`` and invalidated by ``close()``; nothing
    outlives it into the next attempt.
    """

    def __init__(
        self,
        pc: Any,
        audio_track: LocalAudioTrack,
        channel: Any,
        *,
        on_state_change: Optional[StateCallback] = None,
        on_track: Optional[TrackCallback] = None,
    ) -> None:
        self.pc = pc
        self.audio_track = audio_track
        self.channel = channel
        self._closed = False

        @pc.on("connectionstatechange")
        async def _on_connectionstatechange() -> None:
            state = pc.connectionState
            logger.info("Connection state: %s", state)
            if on_state_change and not self._closed:
                if inspect.iscoroutinefunction(on_state_change):
                    await on_state_change(state)
                else:
                    on_state_change(state)

        @pc.on("track")
        async def _on_track(track: Any) -> None:
            logger.info("Remote %s track received", track.kind)
            if track.kind == "audio" and on_track and not self._closed:
                await on_track(track)

    @property
    def closed(self) -> bool:
        return self._closed

    async def negotiate(
        self,
        http: aiohttp.ClientSession,
        credential: EphemeralCredential,
        model: str,
        *,
        base_url: str = DEFAULT_API_BASE,
    ) -> None:
        """
        Run the offer/answer exchange.

        Each step only starts after the previous one succeeded; the first
        failure raises ``NegotiationError`` naming the step.
        """
        try:
            offer = await self.pc.createOffer()
        except Exception as error:
            raise NegotiationError("create offer", str(error) or type(error).__name__) from error

        try:
            await self.pc.setLocalDescription(offer)
        except Exception as error:
            raise NegotiationError("set local description", str(error) or type(error).__name__) from error

        # After ICE gathering the local description includes our candidates.
        local = self.pc.localDescription or offer
        answer_sdp = await exchange_offer(http, credential, local.sdp, model, base_url=base_url)

        try:
            await self.pc.setRemoteDescription(RTCSessionDescription(sdp=answer_sdp, type="answer"))
        except Exception as error:
            raise NegotiationError("set remote description", str(error) or type(error).__name__) from error

        logger.info("Remote description set for model %s", model)

    async def close(self) -> None:
        """Close the peer connection and stop the local track. Safe to repeat."""
        if self._closed:
            return
        self._closed = True
        self.audio_track.stop()
        await self.pc.close()
        logger.debug("Peer session closed")


def open_peer_session(
    audio_track: LocalAudioTrack,
    *,
    ice_servers: Optional[list[str]] = None,
    on_state_change: Optional[StateCallback] = None,
    on_track: Optional[TrackCallback] = None,
    peer_connection_factory: Callable[..., Any] = RTCPeerConnection,
) -> PeerSession:
    """
    Build the peer connection for one attempt.

    Adds the local audio track and creates the ordered events channel; the
    offer is made later by ``PeerSession.negotiate``.
    """
    configuration = None
    if ice_servers:
        configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])

    pc = peer_connection_factory(configuration=configuration)
    pc.addTrack(audio_track)
    channel = pc.createDataChannel(EVENTS_CHANNEL_LABEL, ordered=True)
    return PeerSession(
        pc,
        audio_track,
        channel,
        on_state_change=on_state_change,
        on_track=on_track,
    )
