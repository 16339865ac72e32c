"""Chat data model — messages, sessions, masks and model configuration."""

from __future__ import annotations

import secrets
import string
import time
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from .templates import DEFAULT_INPUT_TEMPLATE, DEFAULT_TOPIC

_ID_ALPHABET = string.ascii_letters + string.digits + "_-"


def new_id(size: int = 21) -> str:
    """Return a URL-safe random identifier."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size))


def now_string() -> str:
    return datetime.now().strftime("%m/%d/%Y, %I:%M:%S %p")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ChatRole(StrEnum):
    """Role of a message participant."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ServiceProvider(StrEnum):
    """Upstream model vendors known to the client."""

    OPENAI = "OpenAI"
    AZURE = "Azure"
    GOOGLE = "Google"
    ANTHROPIC = "Anthropic"
    MOONSHOT = "Moonshot"
    XAI = "XAI"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class ImageUrl(BaseModel):
    url: str


class ContentPart(BaseModel):
    """One part of a multimodal message."""

    type: Literal["text", "image_url"]
    text: str | None = None
    image_url: ImageUrl | None = None


class ToolFunction(BaseModel):
    name: str
    arguments: str | None = None


class ChatMessageTool(BaseModel):
    """A tool invocation attached to an assistant message."""

    id: str
    index: int | None = None
    type: str | None = None
    function: ToolFunction | None = None
    content: str | None = None
    is_error: bool = False
    error_msg: str | None = None


class ChatMessage(BaseModel):
    """Single message in a session."""

    id: str = Field(default_factory=new_id)
    role: ChatRole = ChatRole.USER
    content: str | list[ContentPart] = ""
    date: str = Field(default_factory=now_string)
    streaming: bool = False
    is_error: bool = False
    model: str | None = None
    tools: list[ChatMessageTool] | None = None
    audio_url: str | None = None


def create_message(**override: Any) -> ChatMessage:
    """Build a message with a fresh id and timestamp; keywords override fields."""
    return ChatMessage(**override)


def message_text_content(message: ChatMessage) -> str:
    """Return the text of a message, joining text parts of multimodal content."""
    if isinstance(message.content, str):
        return message.content
    return "\n".join(part.text for part in message.content if part.type == "text" and part.text)


def message_image_urls(message: ChatMessage) -> list[str]:
    if isinstance(message.content, str):
        return []
    return [p.image_url.url for p in message.content if p.type == "image_url" and p.image_url]


# ---------------------------------------------------------------------------
# Configuration carried by sessions
# ---------------------------------------------------------------------------


class ModelInfo(BaseModel):
    """A model the client may talk to."""

    name: str
    available: bool = True
    provider_name: ServiceProvider = ServiceProvider.OPENAI


DEFAULT_MODELS: list[ModelInfo] = [
    ModelInfo(name="gpt-4o-mini"),
    ModelInfo(name="gpt-4o"),
    ModelInfo(name="gpt-4-turbo"),
    ModelInfo(name="gpt-3.5-turbo"),
    ModelInfo(name="o1-mini"),
    ModelInfo(name="dall-e-3"),
    ModelInfo(name="gemini-pro", provider_name=ServiceProvider.GOOGLE),
    ModelInfo(name="gemini-1.5-pro", provider_name=ServiceProvider.GOOGLE),
    ModelInfo(name="claude-3-5-sonnet-20241022", provider_name=ServiceProvider.ANTHROPIC),
    ModelInfo(name="moonshot-v1-8k", provider_name=ServiceProvider.MOONSHOT),
    ModelInfo(name="grok-beta", provider_name=ServiceProvider.XAI),
]


def provider_for_model(model: str, models: list[ModelInfo] | None = None) -> str | None:
    """Provider name of *model* in the known model list, or ``None``."""
    for info in models if models is not None else DEFAULT_MODELS:
        if info.name == model:
            return str(info.provider_name)
    return None


class ModelConfig(BaseModel):
    """Per-session model parameters."""

    model: str = "gpt-4o-mini"
    provider_name: ServiceProvider = ServiceProvider.OPENAI
    temperature: float = 0.5
    top_p: float = 1.0
    max_tokens: int = 4000
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    send_memory: bool = True
    history_message_count: int = Field(default=4, ge=0)
    compress_message_length_threshold: int = 1000
    compress_model: str = ""
    compress_provider_name: str = ""
    enable_inject_system_prompts: bool = True
    template: str = DEFAULT_INPUT_TEMPLATE
    size: str = "1024x1024"
    quality: str = "standard"
    style: str = "vivid"


class Mask(BaseModel):
    """Template for new sessions: topic, static context prompts and model config."""

    id: str = Field(default_factory=new_id)
    name: str = "New Mask"
    avatar: str = "gpt-bot"
    context: list[ChatMessage] = Field(default_factory=list)
    sync_global_config: bool = True
    config: ModelConfig = Field(default_factory=ModelConfig)
    lang: str = "en"
    builtin: bool = False
    created_at: float = Field(default_factory=time.time)


def create_empty_mask() -> Mask:
    return Mask()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class ChatStat(BaseModel):
    token_count: int = 0
    word_count: int = 0
    char_count: int = 0


class ChatSession(BaseModel):
    """One conversation thread with its own history and model configuration."""

    id: str = Field(default_factory=new_id)
    topic: str = DEFAULT_TOPIC
    memory_prompt: str = ""
    messages: list[ChatMessage] = Field(default_factory=list)
    stat: ChatStat = Field(default_factory=ChatStat)
    last_update: float = Field(default_factory=time.time)
    last_summarize_index: int = 0
    clear_context_index: int | None = None
    mask: Mask = Field(default_factory=create_empty_mask)

    @model_validator(mode="after")
    def _clamp_summarize_index(self) -> ChatSession:
        # validate_assignment is off, so mutators re-check via clamp_indices()
        self.clamp_indices()
        return self

    @property
    def config(self) -> ModelConfig:
        return self.mask.config

    def clamp_indices(self) -> None:
        """Keep ``0 <= last_summarize_index <= len(messages)``."""
        self.last_summarize_index = max(0, min(self.last_summarize_index, len(self.messages)))


def create_empty_session() -> ChatSession:
    return ChatSession()


class ChatState(BaseModel):
    """Snapshot of the whole store."""

    sessions: list[ChatSession] = Field(default_factory=lambda: [create_empty_session()])
    current_session_index: int = 0
    last_input: str = ""

    @model_validator(mode="after")
    def _ensure_session(self) -> ChatState:
        if not self.sessions:
            self.sessions = [create_empty_session()]
            self.current_session_index = 0
        return self
