"""Unit tests for the conversation transcript."""

import base64

import pytest

from rtvoice.conversation import Conversation
from rtvoice.models import FunctionCall, ItemPatch


def text_delta(item_id, delta):
    return {"type": "response.text.delta", "item_id": item_id, "delta": delta}


def test_upsert_creates_then_merges():
    conversation = Conversation()
    conversation.upsert("item_1", ItemPatch(role="user", type="message", text="Hello"))
    conversation.upsert("item_1", ItemPatch(text_delta=" there"))

    assert len(conversation) == 1
    item = conversation.get("item_1")
    assert item.role == "user"
    assert item.text == "Hello there"


def test_upsert_requires_role_and_type_for_new_items():
    conversation = Conversation()
    with pytest.raises(ValueError):
        conversation.upsert("item_1", ItemPatch(text="orphan"))
    with pytest.raises(ValueError):
        conversation.upsert("item_1", ItemPatch(role="robot", type="message"))
    assert len(conversation) == 0


def test_populated_fields_never_retracted():
    conversation = Conversation()
    conversation.upsert("item_1", ItemPatch(role="assistant", type="message", text="kept", audio_delta=b"\x01"))
    conversation.upsert("item_1", ItemPatch())

    item = conversation.get("item_1")
    assert item.text == "kept"
    assert item.audio == b"\x01"


def test_role_and_type_fixed_after_creation():
    conversation = Conversation()
    conversation.upsert("item_1", ItemPatch(role="user", type="message"))
    conversation.upsert("item_1", ItemPatch(role="assistant", type="function_call"))

    item = conversation.get("item_1")
    assert (item.role, item.type) == ("user", "message")


def test_items_keep_insertion_order():
    conversation = Conversation()
    for item_id in ("c", "a", "b"):
        conversation.upsert(item_id, ItemPatch(role="user", type="message"))
    conversation.upsert("a", ItemPatch(text="update"))

    assert [item.id for item in conversation] == ["c", "a", "b"]


def test_text_deltas_concatenate_in_arrival_order():
    first, second = Conversation(), Conversation()

    first.apply_event(text_delta("item_1", "Hel"))
    first.apply_event(text_delta("item_1", "lo"))
    second.apply_event(text_delta("item_1", "lo"))
    second.apply_event(text_delta("item_1", "Hel"))

    assert first.get("item_1").text == "Hello"
    assert second.get("item_1").text == "loHel"


def test_delta_for_unknown_item_creates_assistant_message():
    conversation = Conversation()
    conversation.apply_event(text_delta("item_9", "Hi"))

    item = conversation.get("item_9")
    assert (item.role, item.type) == ("assistant", "message")


def test_audio_deltas_append_bytes():
    conversation = Conversation()
    for chunk in (b"\x00\x01", b"\x02\x03"):
        conversation.apply_event(
            {"type": "response.audio.delta", "item_id": "item_1", "delta": base64.b64encode(chunk).decode()}
        )

    assert conversation.get("item_1").audio == b"\x00\x01\x02\x03"


def test_undecodable_audio_delta_dropped():
    conversation = Conversation()
    result = conversation.apply_event({"type": "response.audio.delta", "item_id": "item_1", "delta": "%%%"})

    assert result is None
    assert len(conversation) == 0


def test_item_created_message_with_content():
    conversation = Conversation()
    conversation.apply_event(
        {
            "type": "conversation.item.created",
            "item": {
                "id": "item_1",
                "type": "message",
                "role": "user",
                "content": [{"type": "input_audio", "transcript": "What time"}, {"type": "input_text", "text": " is it?"}],
            },
        }
    )

    item = conversation.get("item_1")
    assert item.role == "user"
    assert item.text == "What time is it?"


def test_item_created_without_content_has_no_text():
    conversation = Conversation()
    conversation.apply_event(
        {"type": "conversation.item.created", "item": {"id": "item_1", "type": "message", "role": "assistant", "content": []}}
    )
    assert conversation.get("item_1").text is None


def test_repeated_item_created_with_empty_content_keeps_text():
    conversation = Conversation()
    conversation.apply_event(text_delta("item_1", "Hello"))
    conversation.apply_event(
        {
            "type": "conversation.item.created",
            "item": {"id": "item_1", "type": "message", "role": "assistant", "content": [{"type": "text", "text": ""}]},
        }
    )
    assert conversation.get("item_1").text == "Hello"


def test_item_created_function_call():
    conversation = Conversation()
    conversation.apply_event(
        {
            "type": "conversation.item.created",
            "item": {
                "id": "item_2",
                "type": "function_call",
                "call_id": "call_1",
                "name": "get_weather",
                "arguments": '{"city":',
            },
        }
    )
    conversation.upsert("item_2", ItemPatch(arguments_delta=' "Paris"}'))

    item = conversation.get("item_2")
    assert item.role == "assistant"
    assert item.function_call == FunctionCall(id="call_1", name="get_weather", arguments='{"city": "Paris"}')


def test_item_created_function_call_output():
    conversation = Conversation()
    conversation.apply_event(
        {
            "type": "conversation.item.created",
            "item": {"id": "item_3", "type": "function_call_output", "call_id": "call_1", "output": "18C"},
        }
    )

    item = conversation.get("item_3")
    assert item.type == "function_call_output"
    assert item.function_call_output == "18C"


def test_item_created_without_id_ignored():
    conversation = Conversation()
    assert conversation.apply_event({"type": "conversation.item.created", "item": {"type": "message"}}) is None
    assert len(conversation) == 0


def test_other_events_do_not_touch_transcript():
    conversation = Conversation()
    assert conversation.apply_event({"type": "session.updated", "session": {}}) is None
    assert len(conversation) == 0


def test_listeners_see_every_change():
    conversation = Conversation()
    seen = []
    conversation.add_listener(lambda item: seen.append(item.text))

    conversation.apply_event(text_delta("item_1", "a"))
    conversation.apply_event(text_delta("item_1", "b"))

    assert seen == ["a", "ab"]


def test_clear_empties_transcript():
    conversation = Conversation()
    conversation.apply_event(text_delta("item_1", "a"))
    conversation.clear()

    assert len(conversation) == 0
    assert conversation.get("item_1") is None
