"""Pydantic models for the JSON events carried on the ``oai-events`` channel.

Only the events this client sends are modelled as classes. Inbound events are
kept as plain dictionaries and dispatched on their ``type`` string, so unknown
fields and unknown event types pass through untouched.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ClientEventType(str, Enum):
    """Types of events that can be sent to the server."""

    SESSION_UPDATE = "session.update"
    RESPONSE_CREATE = "response.create"


class ServerEventType(str, Enum):
    """Types of events received from the server."""

    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    CONVERSATION_ITEM_CREATED = "conversation.item.created"
    RESPONSE_TEXT_DELTA = "response.text.delta"
    RESPONSE_AUDIO_DELTA = "response.audio.delta"
    ERROR = "error"


KNOWN_SERVER_EVENTS = frozenset(event.value for event in ServerEventType)


class ClientEvent(BaseModel):
    """Base model for events sent to the server."""

    type: str
    event_id: Optional[str] = None


class TurnDetection(BaseModel):
    """Server-side voice activity detection settings."""

    type: Literal["server_vad"] = "server_vad"
    threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 200


class SessionSettings(BaseModel):
    turn_detection: TurnDetection = Field(default_factory=TurnDetection)


class SessionUpdateEvent(ClientEvent):
    """Event to update session configuration.

    Sent once when the data channel opens. The server answers with
    ``session.updated``.
    """

    type: str = ClientEventType.SESSION_UPDATE.value
    session: SessionSettings = Field(default_factory=SessionSettings)


class ResponseOptions(BaseModel):
    modalities: List[Literal["audio", "text"]] = Field(default_factory=lambda: ["text", "audio"])
    instructions: Optional[str] = None


class ResponseCreateEvent(ClientEvent):
    """Event to create a model response.

    With server VAD the server creates responses on its own; this is for
    explicitly prompting the model.
    """

    type: str = ClientEventType.RESPONSE_CREATE.value
    response: ResponseOptions = Field(default_factory=ResponseOptions)


def build_session_update(
    threshold: float = 0.5,
    prefix_padding_ms: int = 300,
    silence_duration_ms: int = 200,
) -> SessionUpdateEvent:
    """Build the ``session.update`` enabling server VAD."""
    return SessionUpdateEvent(
        session=SessionSettings(
            turn_detection=TurnDetection(
                threshold=threshold,
                prefix_padding_ms=prefix_padding_ms,
                silence_duration_ms=silence_duration_ms,
            )
        )
    )


def extract_error_message(event: dict) -> Optional[str]:
    """Return ``error.message`` from an ``error`` event, if it is a string."""
    error = event.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return None
