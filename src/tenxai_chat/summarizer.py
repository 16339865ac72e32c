"""Summarizer — automatic session titles and long-term memory compression."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .config import AppConfig
from .context_assembler import memory_prompt_message
from .models import ChatMessage, ChatRole, ChatSession, ModelInfo, ServiceProvider, create_message
from .provider import ChatRequest
from .provider_router import ProviderRouter
from .telemetry import trace_model_call, trace_summarize
from .templates import DEFAULT_TOPIC, SUMMARIZE_PROMPT, TOPIC_PROMPT, trim_topic
from .tokens import count_message_tokens

if TYPE_CHECKING:
    from .store import ChatStore

logger = logging.getLogger(__name__)

SUMMARIZE_MODEL = "gpt-4o-mini"
GEMINI_SUMMARIZE_MODEL = "gemini-pro"

# a title is generated once the conversation reaches this many estimated tokens
SUMMARIZE_MIN_LEN = 50
_FALLBACK_MAX_TOKENS = 4000


def is_dalle3(model: str) -> bool:
    return model == "dall-e-3"


def get_summarize_model(
    current_model: str,
    provider_name: str,
    models: list[ModelInfo],
) -> tuple[str, str]:
    """Pick the model used to summarize a session running *current_model*.

    ``gpt*``/``chatgpt*`` sessions use the lightweight SUMMARIZE_MODEL when it
    is available, ``gemini*`` sessions use GEMINI_SUMMARIZE_MODEL, everything
    else summarizes with the chat model itself.
    """
    if current_model.startswith(("gpt", "chatgpt")):
        for info in models:
            if info.name == SUMMARIZE_MODEL and info.available:
                return info.name, str(info.provider_name)
    if current_model.startswith("gemini"):
        return GEMINI_SUMMARIZE_MODEL, str(ServiceProvider.GOOGLE)
    return current_model, provider_name


class Summarizer:
    """Generates topics and memory prompts for sessions held by a store.

    Both operations run in the background; their failures are logged and
    never reach the caller.
    """

    def __init__(self, store: ChatStore, router: ProviderRouter, config: AppConfig) -> None:
        self._store = store
        self._router = router
        self._config = config

    def summarize_model_for(self, session: ChatSession) -> tuple[str, str]:
        cfg = session.config
        if cfg.compress_model:
            return cfg.compress_model, cfg.compress_provider_name or str(cfg.provider_name)
        return get_summarize_model(cfg.model, str(cfg.provider_name), self._config.models)

    # ------------------------------------------------------------------
    # Title
    # ------------------------------------------------------------------

    def should_generate_title(self, session: ChatSession, refresh_title: bool = False) -> bool:
        if refresh_title:
            return True
        return (
            self._config.enable_auto_generate_title
            and session.topic == DEFAULT_TOPIC
            and count_message_tokens(session.messages) >= SUMMARIZE_MIN_LEN
        )

    def topic_messages(self, session: ChatSession) -> list[ChatMessage]:
        messages = session.messages
        start = max(0, len(messages) - session.config.history_message_count)
        if start >= len(messages):
            start = max(0, len(messages) - 1)
        return [*messages[start:], create_message(role=ChatRole.USER, content=TOPIC_PROMPT)]

    async def generate_title(self, session: ChatSession) -> str | None:
        """Ask the summarize model for a short title and store it.

        Returns the new topic, or ``None`` when the response was not a success.
        """
        model, provider_name = self.summarize_model_for(session)
        provider = self._router.route(provider_name)
        request = ChatRequest(model=model, messages=self.topic_messages(session), stream=False)

        with trace_summarize(session.id, "title"), trace_model_call(model, False):
            response = await provider.chat(request)

        if not response.ok:
            logger.warning("Title generation for %s returned %s", session.id, response.status)
            return None

        topic = trim_topic(response.content) if response.content else DEFAULT_TOPIC
        topic = topic or DEFAULT_TOPIC

        def apply(s: ChatSession) -> None:
            s.topic = topic

        self._store.update_target_session(session, apply)
        logger.info("Session %s titled %r", session.id, topic)
        return topic

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def messages_to_summarize(self, session: ChatSession) -> tuple[list[ChatMessage], int]:
        """Messages to compress and their estimated cost before the memory prefix.

        The slice starts at the later of the last summary and the cleared
        context. When it is too large for one request only the newest
        ``history_message_count`` messages are kept. The existing memory
        prompt, if any, is put in front.
        """
        cfg = session.config
        summarize_index = max(session.last_summarize_index, session.clear_context_index or 0)
        pending = [m for m in session.messages if not m.is_error][summarize_index:]

        history_len = count_message_tokens(pending)
        if history_len > (cfg.max_tokens or _FALLBACK_MAX_TOKENS):
            pending = pending[max(0, len(pending) - cfg.history_message_count):]

        memory = memory_prompt_message(session)
        if memory is not None:
            pending.insert(0, memory)
        return pending, history_len

    def should_compress(self, session: ChatSession, history_len: int) -> bool:
        cfg = session.config
        return history_len > cfg.compress_message_length_threshold and cfg.send_memory

    async def compress_memory(self, session: ChatSession) -> bool:
        """Stream a new memory prompt for *session* if its history grew too long.

        Every chunk overwrites ``memory_prompt`` in the store. On success the
        summary is committed together with ``last_summarize_index`` set to the
        message count seen when the summary was requested.
        """
        to_summarize, history_len = self.messages_to_summarize(session)
        last_summarize_index = len(session.messages)

        logger.debug(
            "History for %s: %d messages, %d tokens, threshold %d",
            session.id,
            len(to_summarize),
            history_len,
            session.config.compress_message_length_threshold,
        )
        if not self.should_compress(session, history_len):
            return False

        cfg = session.config
        model, provider_name = self.summarize_model_for(session)
        provider = self._router.route(provider_name)
        # no max_tokens cap on the summary
        request = ChatRequest(
            model=model,
            messages=[
                *to_summarize,
                create_message(role=ChatRole.SYSTEM, content=SUMMARIZE_PROMPT, date=""),
            ],
            temperature=cfg.temperature,
            top_p=cfg.top_p,
            presence_penalty=cfg.presence_penalty,
            frequency_penalty=cfg.frequency_penalty,
            stream=True,
        )

        summary = ""
        status = 200
        with trace_summarize(session.id, "memory"), trace_model_call(model, True):
            async for chunk in provider.stream(request):
                if chunk.done:
                    status = chunk.status
                    break
                summary += chunk.delta
                partial = summary

                def overwrite(s: ChatSession, text: str = partial) -> None:
                    s.memory_prompt = text

                self._store.update_target_session(session, overwrite, sync=False)

        if status != 200:
            logger.warning("Memory summarization for %s returned %s", session.id, status)
            return False

        def commit(s: ChatSession) -> None:
            s.memory_prompt = summary
            s.last_summarize_index = last_summarize_index
            s.clamp_indices()

        self._store.update_target_session(session, commit)
        logger.info("[Memory] %s summarized up to message %d", session.id, last_summarize_index)
        return True

    # ------------------------------------------------------------------

    async def summarize_session(self, session: ChatSession, refresh_title: bool = False) -> None:
        """Run title generation and memory compression for *session*."""
        if is_dalle3(session.config.model):
            return

        if self.should_generate_title(session, refresh_title):
            try:
                await self.generate_title(session)
            except Exception:
                logger.exception("Title generation failed for %s", session.id)

        try:
            await self.compress_memory(session)
        except Exception:
            logger.exception("[Summarize] memory compression failed for %s", session.id)
