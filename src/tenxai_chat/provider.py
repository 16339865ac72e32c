"""LLM Provider abstraction — pluggable backend for real and stub LLMs."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from pydantic import BaseModel, Field

from .models import ChatMessage, message_text_content

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class ProviderCapabilities(BaseModel):
    """Declares what a provider can do."""

    vision: bool = False
    streaming: bool = False


class ChatRequest(BaseModel):
    """Request payload sent to an LLM provider."""

    model: str
    messages: list[ChatMessage]
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    stream: bool = False


class TokenUsage(BaseModel):
    """Token consumption metrics for a single request."""

    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ChatResponse(BaseModel):
    """Response returned from an LLM provider."""

    content: str
    status: int = 200
    usage: TokenUsage | None = None

    @property
    def ok(self) -> bool:
        return self.status == 200


class StreamChunk(BaseModel):
    """Incremental piece of a streamed completion."""

    delta: str = ""
    done: bool = False
    status: int = 200
    usage: TokenUsage | None = Field(default=None)


# ---------------------------------------------------------------------------
# LLMProvider ABC
# ---------------------------------------------------------------------------


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the canonical provider name (e.g. 'OpenAI')."""

    @abstractmethod
    def capabilities(self) -> ProviderCapabilities:
        """Describe what this provider supports."""

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send a chat completion request and wait for the whole answer."""

    @abstractmethod
    def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Send a chat completion request and yield chunks as they arrive.

        The final chunk has ``done=True`` and carries the response status.
        """


# ---------------------------------------------------------------------------
# Stub implementation (for testing / offline development)
# ---------------------------------------------------------------------------


class StubLLMProvider(LLMProvider):
    """Returns canned responses without making real HTTP calls."""

    _CANNED = "This is a stub response for testing purposes."

    def __init__(self, reply: str | None = None, provider_name: str = "stub") -> None:
        self._reply = reply
        self._name = provider_name
        self.requests: list[ChatRequest] = []

    def name(self) -> str:
        return self._name

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(vision=False, streaming=True)

    def _answer(self, request: ChatRequest) -> str:
        if self._reply is not None:
            return self._reply
        return f"{self._CANNED} (model={request.model})"

    def _usage(self, request: ChatRequest, reply: str) -> TokenUsage:
        prompt_tokens = sum(len(message_text_content(m).split()) for m in request.messages)
        return TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=len(reply.split()))

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Return a deterministic canned response."""
        self.requests.append(request)
        reply = self._answer(request)
        return ChatResponse(content=reply, usage=self._usage(request, reply))

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Yield the canned response word by word."""
        self.requests.append(request)
        reply = self._answer(request)
        words = reply.split(" ")
        for i, word in enumerate(words):
            yield StreamChunk(delta=word if i == 0 else " " + word)
        yield StreamChunk(done=True, usage=self._usage(request, reply))
