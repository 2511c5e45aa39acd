"""Data model shared by the session, the transcript and the front end."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SessionStatus(str, Enum):
    """Connection lifecycle of a realtime session."""

    DISCONNECTED = "disconnected"
    FETCHING_CREDENTIAL = "fetching_credential"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


ROLES = frozenset({"user", "assistant", "system"})
ITEM_TYPES = frozenset({"message", "function_call", "function_call_output"})


@dataclass(frozen=True)
class EphemeralCredential:
    """Short-lived bearer token minted for a single offer/answer exchange."""

    value: str
    expires_at: Optional[int] = None

    def __repr__(self) -> str:
        return f"EphemeralCredential(value='***', expires_at={self.expires_at!r})"


@dataclass
class FunctionCall:
    id: str
    name: str
    arguments: str = ""


@dataclass
class ConversationItem:
    """One transcript entry.

    ``id`` never changes once the item exists. The optional fields only ever
    go from ``None`` to a value or grow as deltas arrive.
    """

    id: str
    role: str
    type: str
    text: Optional[str] = None
    audio: Optional[bytes] = None
    function_call: Optional[FunctionCall] = None
    function_call_output: Optional[str] = None


@dataclass
class ItemPatch:
    """Changes to apply to a conversation item.

    ``text`` replaces the current text, ``text_delta``, ``audio_delta`` and
    ``arguments_delta`` are appended. ``role`` and ``type`` are only used when
    the item does not exist yet.
    """

    role: Optional[str] = None
    type: Optional[str] = None
    text: Optional[str] = None
    text_delta: Optional[str] = None
    audio_delta: Optional[bytes] = None
    function_call: Optional[FunctionCall] = None
    arguments_delta: Optional[str] = None
    function_call_output: Optional[str] = None
