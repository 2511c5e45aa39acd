"""JSON event protocol over the ordered ``oai-events`` data channel."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, List, Optional, Union

from pydantic import BaseModel

from .errors import ChannelParseError, ChannelSendError
from .events import (
    KNOWN_SERVER_EVENTS,
    ResponseCreateEvent,
    ResponseOptions,
    ServerEventType,
    SessionUpdateEvent,
    build_session_update,
    extract_error_message,
)

logger = logging.getLogger(__name__)

EVENTS_CHANNEL_LABEL = "oai-events"

OutboundEvent = Union[BaseModel, dict]


def parse_event(payload: Union[str, bytes]) -> dict:
    """
    Decode one inbound channel payload.

    Raises:
        ChannelParseError: For binary payloads, invalid JSON, anything that is
            not a JSON object, or an object without a string ``type``.
    """
    if isinstance(payload, (bytes, bytearray)):
        raise ChannelParseError("binary payload")
    try:
        event = json.loads(payload)
    except ValueError as error:
        raise ChannelParseError(f"invalid JSON: {error}") from error
    if not isinstance(event, dict):
        raise ChannelParseError("event is not a JSON object")
    if not isinstance(event.get("type"), str):
        raise ChannelParseError("event has no type")
    return event


def serialize_event(event: OutboundEvent) -> str:
    """Encode an outbound event, raising ``ChannelSendError`` if it cannot be."""
    try:
        if isinstance(event, BaseModel):
            return event.model_dump_json(exclude_none=True)
        return json.dumps(event)
    except (TypeError, ValueError) as error:
        raise ChannelSendError(f"Error serializing JSON: {error}") from error


class EventChannel:
    """Wraps an aiortc data channel carrying realtime events.

    Once the channel opens, one ``session.update`` enabling server VAD is sent.
    Every inbound event with a known type is handed to ``on_event`` in
    arrival order; everything else is dropped.
    """

    def __init__(
        self,
        channel: Any,
        *,
        on_event: Callable[[dict], None],
        on_open: Optional[Callable[[], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        session_update: Optional[SessionUpdateEvent] = None,
    ) -> None:
        self.channel = channel
        self.session_update = session_update or build_session_update()
        self._on_event = on_event
        self._on_open = on_open
        self._on_close = on_close
        self._configured = False
        self._closed = False

        @channel.on("open")
        def _on_channel_open() -> None:
            self._handle_open()

        @channel.on("message")
        def _on_channel_message(message: Union[str, bytes]) -> None:
            self._handle_message(message)

        @channel.on("close")
        def _on_channel_close() -> None:
            self._handle_close()

        # The channel may already be open when wrapped late.
        if getattr(channel, "readyState", None) == "open":
            self._handle_open()

    @property
    def label(self) -> str:
        return getattr(self.channel, "label", EVENTS_CHANNEL_LABEL)

    @property
    def is_open(self) -> bool:
        return not self._closed and getattr(self.channel, "readyState", None) == "open"

    def send(self, event: OutboundEvent) -> bool:
        """Send one event. Returns False when nothing was sent."""
        if not self.is_open:
            logger.debug("Channel %s not open, dropping outbound event", self.label)
            return False
        try:
            data = serialize_event(event)
        except ChannelSendError as error:
            logger.error("%s", error)
            return False
        self.channel.send(data)
        return True

    def request_response(
        self,
        modalities: Optional[List[str]] = None,
        instructions: Optional[str] = None,
    ) -> bool:
        """Ask the model for a response (``response.create``)."""
        if modalities is None:
            options = ResponseOptions(instructions=instructions)
        else:
            options = ResponseOptions(modalities=list(modalities), instructions=instructions)
        return self.send(ResponseCreateEvent(response=options))

    def close(self) -> None:
        """Stop delivering events; the peer connection owns the channel itself."""
        self._closed = True

    def _handle_open(self) -> None:
        if self._closed or self._configured:
            return
        self._configured = True
        logger.info("Data channel %s open", self.label)
        self.send(self.session_update)
        if self._on_open:
            self._on_open()

    def _handle_message(self, message: Union[str, bytes]) -> None:
        if self._closed:
            return
        try:
            event = parse_event(message)
        except ChannelParseError as error:
            logger.debug("Dropping inbound payload: %s", error)
            return

        event_type = event["type"]
        if event_type not in KNOWN_SERVER_EVENTS:
            logger.info("Unhandled message type: %s", event_type)
            return
        if event_type == ServerEventType.ERROR.value:
            logger.error("API Error: %s", extract_error_message(event) or "unknown error")
        self._on_event(event)

    def _handle_close(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.info("Data channel %s closed", self.label)
        if self._on_close:
            self._on_close()
