"""Tests for title generation and memory compression."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from tenxai_chat.config import AppConfig
from tenxai_chat.models import (
    DEFAULT_MODELS,
    ChatMessage,
    ChatRole,
    ChatSession,
    ChatState,
    Mask,
    ModelConfig,
    ModelInfo,
)
from tenxai_chat.provider import ChatRequest, ChatResponse, StreamChunk, StubLLMProvider
from tenxai_chat.provider_router import ProviderRouter
from tenxai_chat.store import ChatStore
from tenxai_chat.summarizer import Summarizer, get_summarize_model, is_dalle3
from tenxai_chat.templates import DEFAULT_TOPIC, SUMMARIZE_PROMPT, TOPIC_PROMPT

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FailingProvider(StubLLMProvider):
    """Answers every request with an HTTP error status."""

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        return ChatResponse(content="", status=500)

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        self.requests.append(request)
        yield StreamChunk(delta="partial")
        yield StreamChunk(done=True, status=500)


class _RaisingProvider(StubLLMProvider):
    async def chat(self, request: ChatRequest) -> ChatResponse:
        raise RuntimeError("network down")

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        raise RuntimeError("network down")
        yield StreamChunk()  # pragma: no cover


def _setup(
    provider: StubLLMProvider,
    *,
    count: int = 6,
    text: str = "a" * 40,  # 10 estimated tokens
    config: AppConfig | None = None,
    **model: object,
) -> tuple[ChatStore, Summarizer, ChatSession]:
    model.setdefault("model", "gpt-4o")
    messages = [
        ChatMessage(role=ChatRole.USER if i % 2 == 0 else ChatRole.ASSISTANT, content=text)
        for i in range(count)
    ]
    session = ChatSession(messages=messages, mask=Mask(config=ModelConfig(**model)))
    config = config or AppConfig()
    store = ChatStore(config, state=ChatState(sessions=[session]))
    router = ProviderRouter()
    router.register(provider, "OpenAI", "Google")
    return store, Summarizer(store, router, config), session


# ---------------------------------------------------------------------------
# Model selection
# ---------------------------------------------------------------------------


def test_gpt_models_summarize_with_mini_model():
    assert get_summarize_model("gpt-4o", "OpenAI", DEFAULT_MODELS) == ("gpt-4o-mini", "OpenAI")
    assert get_summarize_model("chatgpt-4o-latest", "OpenAI", DEFAULT_MODELS)[0] == "gpt-4o-mini"


def test_gpt_model_without_mini_available_keeps_itself():
    models = [ModelInfo(name="gpt-4o-mini", available=False)]
    assert get_summarize_model("gpt-4o", "OpenAI", models) == ("gpt-4o", "OpenAI")


def test_gemini_models_summarize_with_gemini_pro():
    assert get_summarize_model("gemini-1.5-pro", "Google", DEFAULT_MODELS) == (
        "gemini-pro",
        "Google",
    )


def test_other_models_summarize_with_themselves():
    assert get_summarize_model("grok-beta", "XAI", DEFAULT_MODELS) == ("grok-beta", "XAI")


def test_explicit_compress_model_wins():
    _, summarizer, session = _setup(
        StubLLMProvider(), compress_model="my-model", compress_provider_name="Google"
    )
    assert summarizer.summarize_model_for(session) == ("my-model", "Google")


def test_is_dalle3():
    assert is_dalle3("dall-e-3")
    assert not is_dalle3("gpt-4o")


# ---------------------------------------------------------------------------
# Title
# ---------------------------------------------------------------------------


def test_should_generate_title():
    _, summarizer, session = _setup(StubLLMProvider(), count=6)  # 60 tokens
    assert summarizer.should_generate_title(session)

    short = session.model_copy(update={"messages": session.messages[:2]})
    assert not summarizer.should_generate_title(short)
    assert summarizer.should_generate_title(short, refresh_title=True)

    titled = session.model_copy(update={"topic": "Cats"})
    assert not summarizer.should_generate_title(titled)


def test_auto_title_can_be_disabled():
    _, summarizer, session = _setup(
        StubLLMProvider(), config=AppConfig(enable_auto_generate_title=False)
    )
    assert not summarizer.should_generate_title(session)


def test_topic_messages_ends_with_topic_prompt():
    _, summarizer, session = _setup(StubLLMProvider(), count=6, history_message_count=4)
    messages = summarizer.topic_messages(session)
    assert messages[:-1] == session.messages[-4:]
    assert messages[-1].content == TOPIC_PROMPT


@pytest.mark.asyncio
async def test_generate_title_sets_trimmed_topic():
    stub = StubLLMProvider(reply='"Cute Cats."')
    store, summarizer, session = _setup(stub)

    topic = await summarizer.generate_title(session)

    assert topic == "Cute Cats"
    assert store.current_session().topic == "Cute Cats"
    assert stub.requests[0].model == "gpt-4o-mini"
    assert stub.requests[0].stream is False


@pytest.mark.asyncio
async def test_generate_title_empty_reply_falls_back_to_default():
    store, summarizer, session = _setup(StubLLMProvider(reply=""))
    store.update_target_session(session, lambda s: setattr(s, "topic", "Old"))
    assert await summarizer.generate_title(session) == DEFAULT_TOPIC
    assert store.current_session().topic == DEFAULT_TOPIC


@pytest.mark.asyncio
async def test_generate_title_error_status_leaves_topic():
    store, summarizer, session = _setup(_FailingProvider())
    assert await summarizer.generate_title(session) is None
    assert store.current_session().topic == DEFAULT_TOPIC


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


def test_messages_to_summarize_skips_errors_and_summarized():
    _, summarizer, session = _setup(StubLLMProvider(), count=6)
    session.messages[5].is_error = True
    session.last_summarize_index = 2

    pending, history_len = summarizer.messages_to_summarize(session)

    assert pending == [m for m in session.messages if not m.is_error][2:]
    assert history_len == 30


def test_messages_to_summarize_prepends_memory_after_measuring():
    _, summarizer, session = _setup(StubLLMProvider(), count=4)
    session.memory_prompt = "x" * 400

    pending, history_len = summarizer.messages_to_summarize(session)

    assert pending[0].role == ChatRole.SYSTEM
    assert pending[0].content.endswith("x" * 400)
    assert history_len == 40


def test_messages_to_summarize_truncates_oversized_history():
    _, summarizer, session = _setup(
        StubLLMProvider(), count=10, max_tokens=50, history_message_count=3
    )
    pending, history_len = summarizer.messages_to_summarize(session)
    assert history_len == 100
    assert pending == session.messages[-3:]


def test_should_compress():
    _, summarizer, session = _setup(StubLLMProvider(), compress_message_length_threshold=50)
    assert summarizer.should_compress(session, 51)
    assert not summarizer.should_compress(session, 50)

    session.mask.config.send_memory = False
    assert not summarizer.should_compress(session, 51)


@pytest.mark.asyncio
async def test_compress_memory_commits_summary_and_index():
    stub = StubLLMProvider(reply="they talked about cats")
    store, summarizer, session = _setup(stub, count=6, compress_message_length_threshold=20)

    assert await summarizer.compress_memory(session) is True

    current = store.current_session()
    assert current.memory_prompt == "they talked about cats"
    assert current.last_summarize_index == 6

    request = stub.requests[-1]
    assert request.stream is True
    assert request.max_tokens is None
    assert request.model == "gpt-4o-mini"
    assert request.messages[-1].role == ChatRole.SYSTEM
    assert request.messages[-1].content == SUMMARIZE_PROMPT


@pytest.mark.asyncio
async def test_compress_memory_below_threshold_does_nothing():
    stub = StubLLMProvider()
    store, summarizer, session = _setup(stub, count=2)  # 20 tokens < 1000

    assert await summarizer.compress_memory(session) is False
    assert stub.requests == []
    assert store.current_session().memory_prompt == ""


@pytest.mark.asyncio
async def test_compress_memory_error_status_keeps_index():
    store, summarizer, session = _setup(
        _FailingProvider(), count=6, compress_message_length_threshold=20
    )

    assert await summarizer.compress_memory(session) is False
    assert store.current_session().last_summarize_index == 0


@pytest.mark.asyncio
async def test_index_is_captured_when_summary_is_requested():
    stub = StubLLMProvider(reply="summary")
    store, summarizer, session = _setup(stub, count=6, compress_message_length_threshold=20)
    # a message arrives after the snapshot handed to the summarizer was taken
    store.append_messages(session, [ChatMessage(content="late")], sync=False)

    await summarizer.compress_memory(session)

    current = store.current_session()
    assert len(current.messages) == 7
    assert current.last_summarize_index == 6


# ---------------------------------------------------------------------------
# summarize_session
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_summarize_session_runs_title_and_memory():
    stub = StubLLMProvider(reply="Cats")
    store, summarizer, session = _setup(stub, count=6, compress_message_length_threshold=20)

    await summarizer.summarize_session(session)

    current = store.current_session()
    assert current.topic == "Cats"
    assert current.memory_prompt == "Cats"
    assert len(stub.requests) == 2


@pytest.mark.asyncio
async def test_summarize_session_skips_dalle3():
    stub = StubLLMProvider()
    _, summarizer, session = _setup(stub, model="dall-e-3", compress_message_length_threshold=0)
    await summarizer.summarize_session(session, refresh_title=True)
    assert stub.requests == []


@pytest.mark.asyncio
async def test_summarize_session_swallows_provider_errors():
    store, summarizer, session = _setup(
        _RaisingProvider(), count=6, compress_message_length_threshold=20
    )
    await summarizer.summarize_session(session, refresh_title=True)
    assert store.current_session().topic == DEFAULT_TOPIC
