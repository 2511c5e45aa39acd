"""Local microphone track, mute control and remote audio sink."""

from __future__ import annotations

import logging
from typing import Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from aiortc.mediastreams import AudioStreamTrack
from av import AudioFrame

logger = logging.getLogger(__name__)


def _silence_like(frame: AudioFrame) -> AudioFrame:
    """Return a zeroed frame with the same shape and timing as ``frame``."""
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.pts = frame.pts
    silent.sample_rate = frame.sample_rate
    if frame.time_base is not None:
        silent.time_base = frame.time_base
    return silent


class LocalAudioTrack(MediaStreamTrack):
    """Audio track sent to the peer, with an ``enabled`` switch.

    While disabled the source keeps being read so timing stays intact, but
    every frame is replaced by silence.
    """

    kind = "audio"

    def __init__(self, source: Optional[MediaStreamTrack] = None) -> None:
        super().__init__()
        # AudioStreamTrack on its own produces paced silence.
        self.source = source or AudioStreamTrack()
        self.enabled = True

    async def recv(self) -> AudioFrame:
        frame = await self.source.recv()
        if self.enabled:
            return frame
        return _silence_like(frame)

    def stop(self) -> None:
        super().stop()
        self.source.stop()


def open_microphone(device: Optional[str] = None, format: Optional[str] = None) -> LocalAudioTrack:
    """
    Open the local microphone as a sendable track.

    Args:
        device: Input passed to ``MediaPlayer`` (e.g. "default", "hw:0")
        format: FFmpeg input format for the device (e.g. "pulse", "avfoundation")

    Returns:
        A ``LocalAudioTrack``; it carries silence when no device is configured.
    """
    if not device:
        logger.info("No microphone configured, sending silence")
        return LocalAudioTrack()

    player = MediaPlayer(device, format=format)
    if player.audio is None:
        raise RuntimeError(f"Input {device!r} has no audio stream")
    logger.info("Using microphone %s", device)
    return LocalAudioTrack(player.audio)


class MuteController:
    """Mute state of the local microphone, independent of the connection."""

    def __init__(self) -> None:
        self.is_muted = False
        self._track: Optional[LocalAudioTrack] = None

    def attach(self, track: Optional[LocalAudioTrack]) -> None:
        """Follow a new local track, applying the current mute state to it."""
        self._track = track
        if track is not None:
            track.enabled = not self.is_muted

    def toggle(self) -> bool:
        """Flip the mute state and return the new value."""
        self.is_muted = not self.is_muted
        if self._track is not None:
            self._track.enabled = not self.is_muted
        logger.debug("Microphone %s", "muted" if self.is_muted else "unmuted")
        return self.is_muted


class RemoteAudioSink:
    """Consumes the assistant's audio track so the media pipeline keeps flowing."""

    def __init__(self, record_path: Optional[str] = None) -> None:
        self.record_path = record_path
        self._sink: Optional[MediaBlackhole | MediaRecorder] = None

    async def start(self, track: MediaStreamTrack) -> None:
        if self._sink is not None:
            logger.debug("Remote audio sink already running, ignoring extra track")
            return
        self._sink = MediaRecorder(self.record_path) if self.record_path else MediaBlackhole()
        self._sink.addTrack(track)
        await self._sink.start()
        logger.info("Receiving remote audio%s", f" into {self.record_path}" if self.record_path else "")

    async def stop(self) -> None:
        sink, self._sink = self._sink, None
        if sink is not None:
            await sink.stop()
