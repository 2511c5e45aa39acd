"""Ordered transcript of the items exchanged during a session."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .events import ServerEventType
from .models import ITEM_TYPES, ROLES, ConversationItem, FunctionCall, ItemPatch

logger = logging.getLogger(__name__)

ItemListener = Callable[[ConversationItem], None]


def _content_text(content: object) -> Optional[str]:
    """Join the text (or transcript) parts of an item's content list."""
    if not isinstance(content, list):
        return None
    parts = []
    for part in content:
        if not isinstance(part, dict):
            continue
        value = part.get("text")
        if not isinstance(value, str):
            value = part.get("transcript")
        if isinstance(value, str):
            parts.append(value)
    text = "".join(parts)
    return text or None


def patch_from_item(item: dict) -> ItemPatch:
    """Translate the ``item`` of a ``conversation.item.created`` event."""
    item_type = item.get("type") if item.get("type") in ITEM_TYPES else "message"
    role = item.get("role")
    if role not in ROLES:
        # Function call items carry no role; calls come from the model, outputs from us.
        role = "user" if item_type == "function_call_output" else "assistant"

    patch = ItemPatch(role=role, type=item_type, text=_content_text(item.get("content")))
    if item_type == "function_call":
        patch.function_call = FunctionCall(
            id=str(item.get("call_id") or item.get("id")),
            name=str(item.get("name") or ""),
            arguments=item.get("arguments") if isinstance(item.get("arguments"), str) else "",
        )
    elif item_type == "function_call_output" and isinstance(item.get("output"), str):
        patch.function_call_output = item["output"]
    return patch


class Conversation:
    """Append-only list of conversation items keyed by item id.

    Items are never removed except by ``clear()``. Patches for the same item
    must be applied in arrival order; deltas are concatenated, so the order
    matters.
    """

    def __init__(self) -> None:
        self._items: List[ConversationItem] = []
        self._index: Dict[str, ConversationItem] = {}
        self._listeners: List[ItemListener] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ConversationItem]:
        return iter(tuple(self._items))

    @property
    def items(self) -> Tuple[ConversationItem, ...]:
        return tuple(self._items)

    def get(self, item_id: str) -> Optional[ConversationItem]:
        return self._index.get(item_id)

    def add_listener(self, listener: ItemListener) -> None:
        """Register a callback invoked with every created or changed item."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ItemListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear(self) -> None:
        self._items.clear()
        self._index.clear()

    def upsert(self, item_id: str, patch: ItemPatch) -> ConversationItem:
        """
        Create the item from ``patch`` or merge ``patch`` into it.

        Raises:
            ValueError: When the item does not exist and the patch lacks a
                valid role or type.
        """
        item = self._index.get(item_id)
        if item is None:
            if patch.role not in ROLES or patch.type not in ITEM_TYPES:
                raise ValueError(f"Cannot create item {item_id!r} without a valid role and type")
            item = ConversationItem(id=item_id, role=patch.role, type=patch.type)
            self._items.append(item)
            self._index[item_id] = item
        self._merge(item, patch)
        for listener in list(self._listeners):
            listener(item)
        return item

    @staticmethod
    def _merge(item: ConversationItem, patch: ItemPatch) -> None:
        if patch.text is not None:
            item.text = patch.text
        if patch.text_delta:
            item.text = (item.text or "") + patch.text_delta
        if patch.audio_delta:
            item.audio = (item.audio or b"") + patch.audio_delta
        if patch.function_call is not None:
            if item.function_call is None:
                item.function_call = patch.function_call
            elif patch.function_call.arguments:
                item.function_call.arguments = patch.function_call.arguments
        if patch.arguments_delta and item.function_call is not None:
            item.function_call.arguments += patch.arguments_delta
        if patch.function_call_output is not None:
            item.function_call_output = patch.function_call_output

    def apply_event(self, event: dict) -> Optional[ConversationItem]:
        """Apply one inbound server event; returns the touched item, if any."""
        event_type = event.get("type")

        if event_type == ServerEventType.CONVERSATION_ITEM_CREATED.value:
            item = event.get("item")
            if not isinstance(item, dict) or not isinstance(item.get("id"), str):
                logger.warning("conversation.item.created without an item id")
                return None
            return self.upsert(item["id"], patch_from_item(item))

        if event_type == ServerEventType.RESPONSE_TEXT_DELTA.value:
            item_id = event.get("item_id")
            delta = event.get("delta")
            if not isinstance(item_id, str) or not isinstance(delta, str):
                logger.warning("response.text.delta without item_id or delta")
                return None
            return self.upsert(item_id, ItemPatch(role="assistant", type="message", text_delta=delta))

        if event_type == ServerEventType.RESPONSE_AUDIO_DELTA.value:
            item_id = event.get("item_id")
            delta = event.get("delta")
            if not isinstance(item_id, str) or not isinstance(delta, str):
                logger.warning("response.audio.delta without item_id or delta")
                return None
            try:
                audio = base64.b64decode(delta, validate=True)
            except (binascii.Error, ValueError) as error:
                logger.warning("Dropping undecodable audio delta for %s: %s", item_id, error)
                return None
            return self.upsert(item_id, ItemPatch(role="assistant", type="message", audio_delta=audio))

        return None
