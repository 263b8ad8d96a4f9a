import dataclasses

import pytest

from chatbot_core.domain.conversation import ConversationBuffer
from chatbot_core.domain.models import ChatMessage, StreamEvent


def test_message_is_immutable():
    msg = ChatMessage.user("hi")
    assert msg.role == "user"
    assert msg.to_payload() == {"role": "user", "content": "hi"}
    with pytest.raises(dataclasses.FrozenInstanceError):
        msg.content = "changed"
    with pytest.raises(ValueError):
        ChatMessage(role="tool", content="x")


def test_buffer_is_append_only_and_ordered():
    buffer = ConversationBuffer()
    buffer.append(ChatMessage.system("sp"))
    buffer.append(ChatMessage.user("q"))
    snap = buffer.snapshot()
    buffer.append(ChatMessage.assistant("a"))

    assert len(snap) == 2
    assert [m.role for m in buffer] == ["system", "user", "assistant"]
    assert buffer.system_prompt == "sp"
    assert buffer.count("user") == 1
    assert not hasattr(buffer, "remove")


def test_stream_event_constructors():
    assert StreamEvent.delta("x") == StreamEvent(kind="delta", text="x")
    assert StreamEvent.done().kind == "done"
    assert StreamEvent.decode_error("bad").reason == "bad"
