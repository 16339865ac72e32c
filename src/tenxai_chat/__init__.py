"""tenxai-chat — chat sessions, context assembly and server sync for a ChatGPT-style client."""

from __future__ import annotations

__version__ = "0.3.0"

from .chat import ChatSessionController
from .chat_logs import ChatLog, ChatLogClient, ChatLogPage
from .config import AppConfig
from .context_assembler import build_context_messages, memory_prompt_message
from .controller import ChatControllerPool
from .errors import (
    ApiEnvelope,
    ChatLogError,
    NotFoundError,
    OtpDeliveryError,
    ProviderError,
    ServerError,
    UnauthorizedError,
    ValidationError,
)
from .models import (
    ChatMessage,
    ChatRole,
    ChatSession,
    ChatStat,
    ChatState,
    ContentPart,
    Mask,
    ModelConfig,
    ServiceProvider,
    create_empty_mask,
    create_empty_session,
    create_message,
)
from .openai_provider import OpenAIProvider
from .otp import OtpSender, OtpService, UserDirectory, UserRecord, generate_otp, verify_otp
from .provider import (
    ChatRequest,
    ChatResponse,
    LLMProvider,
    ProviderCapabilities,
    StreamChunk,
    StubLLMProvider,
    TokenUsage,
)
from .provider_router import ProviderRouter
from .settings_sync import (
    MergeStrategy,
    SyncableSettings,
    SyncMetadata,
    UserSettingsSync,
    merge_settings,
)
from .store import ChatStore, DeletedSession, JsonFilePersister
from .summarizer import Summarizer, get_summarize_model
from .sync import ServerSyncAdapter
from .tasks import BackgroundTaskQueue
from .telemetry import ChatTracer, TelemetryConfig, configure_tracing, get_tracer
from .tokens import TokenBudget, count_message_tokens, estimate_tokens

__all__ = [
    "ApiEnvelope",
    "AppConfig",
    "BackgroundTaskQueue",
    "ChatControllerPool",
    "ChatLog",
    "ChatLogClient",
    "ChatLogError",
    "ChatLogPage",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatRole",
    "ChatSession",
    "ChatSessionController",
    "ChatStat",
    "ChatState",
    "ChatStore",
    "ChatTracer",
    "ContentPart",
    "DeletedSession",
    "JsonFilePersister",
    "LLMProvider",
    "Mask",
    "MergeStrategy",
    "ModelConfig",
    "NotFoundError",
    "OpenAIProvider",
    "OtpDeliveryError",
    "OtpSender",
    "OtpService",
    "ProviderCapabilities",
    "ProviderError",
    "ProviderRouter",
    "ServerError",
    "ServerSyncAdapter",
    "ServiceProvider",
    "StreamChunk",
    "StubLLMProvider",
    "Summarizer",
    "SyncMetadata",
    "SyncableSettings",
    "TelemetryConfig",
    "TokenBudget",
    "TokenUsage",
    "UnauthorizedError",
    "UserDirectory",
    "UserRecord",
    "UserSettingsSync",
    "ValidationError",
    "build_context_messages",
    "configure_tracing",
    "count_message_tokens",
    "create_empty_mask",
    "create_empty_session",
    "create_message",
    "estimate_tokens",
    "generate_otp",
    "get_summarize_model",
    "get_tracer",
    "memory_prompt_message",
    "merge_settings",
    "verify_otp",
]
