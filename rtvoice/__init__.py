"""Realtime voice client for the OpenAI Realtime API over WebRTC.

The session negotiates an aiortc peer connection with the service, sends
microphone audio on it, and speaks the JSON event protocol over the ordered
``oai-events`` data channel while keeping a local transcript.
"""

__all__ = [
    "config",
    "errors",
    "models",
    "events",
    "credentials",
    "transport",
    "channel",
    "conversation",
    "audio",
    "session",
]
