"""Tests for the chat data model."""

from __future__ import annotations

from tenxai_chat.models import (
    ChatMessage,
    ChatRole,
    ChatSession,
    ChatState,
    ContentPart,
    ImageUrl,
    ServiceProvider,
    create_empty_mask,
    create_empty_session,
    create_message,
    message_image_urls,
    message_text_content,
    new_id,
    provider_for_model,
)
from tenxai_chat.templates import DEFAULT_TOPIC


def test_new_id_is_random_and_sized():
    a, b = new_id(), new_id()
    assert len(a) == 21
    assert a != b


def test_create_message_defaults():
    msg = create_message(role=ChatRole.ASSISTANT, content="hi")
    assert msg.role == "assistant"
    assert msg.content == "hi"
    assert msg.id
    assert msg.date
    assert msg.streaming is False
    assert msg.is_error is False


def test_multimodal_helpers():
    msg = ChatMessage(
        content=[
            ContentPart(type="text", text="look"),
            ContentPart(type="image_url", image_url=ImageUrl(url="https://x/img.png")),
        ]
    )
    assert message_text_content(msg) == "look"
    assert message_image_urls(msg) == ["https://x/img.png"]
    assert message_image_urls(ChatMessage(content="plain")) == []


def test_empty_mask_defaults():
    mask = create_empty_mask()
    assert mask.name == "New Mask"
    assert mask.context == []
    assert mask.config.model == "gpt-4o-mini"
    assert mask.config.history_message_count == 4
    assert mask.config.compress_message_length_threshold == 1000


def test_empty_session_defaults():
    session = create_empty_session()
    assert session.topic == DEFAULT_TOPIC
    assert session.messages == []
    assert session.memory_prompt == ""
    assert session.last_summarize_index == 0
    assert session.clear_context_index is None
    assert session.config is session.mask.config


def test_summarize_index_clamped_on_validation():
    session = ChatSession(messages=[ChatMessage(content="a")], last_summarize_index=5)
    assert session.last_summarize_index == 1

    session = ChatSession(last_summarize_index=-3)
    assert session.last_summarize_index == 0


def test_clamp_indices_after_mutation():
    session = ChatSession(messages=[ChatMessage(content="a"), ChatMessage(content="b")])
    session.last_summarize_index = 2
    session.messages = session.messages[:1]
    session.clamp_indices()
    assert session.last_summarize_index == 1


def test_state_always_has_a_session():
    state = ChatState(sessions=[])
    assert len(state.sessions) == 1
    assert state.current_session_index == 0


def test_state_json_round_trip():
    state = ChatState()
    state.sessions[0].messages.append(ChatMessage(role=ChatRole.USER, content="hi"))
    restored = ChatState.model_validate_json(state.model_dump_json())
    assert restored.model_dump() == state.model_dump()


def test_provider_for_model():
    assert provider_for_model("gpt-4o") == ServiceProvider.OPENAI
    assert provider_for_model("gemini-pro") == ServiceProvider.GOOGLE
    assert provider_for_model("unknown-model") is None
