"""Chat flow — turns user input into a streamed, stored and synced reply."""

from __future__ import annotations

import asyncio
import json
import logging

from .config import AppConfig
from .context_assembler import build_context_messages
from .controller import ChatControllerPool
from .errors import ProviderError
from .models import (
    ChatMessage,
    ChatRole,
    ChatSession,
    ContentPart,
    ImageUrl,
    create_message,
    now_string,
)
from .provider import ChatRequest
from .provider_router import ProviderRouter
from .store import ChatStore
from .summarizer import Summarizer
from .telemetry import trace_model_call
from .templates import fill_template_with

logger = logging.getLogger(__name__)


def _error_note(message: str) -> str:
    return "\n\n" + json.dumps({"error": True, "message": message}, indent=4)


class ChatSessionController:
    """Runs chat turns against the sessions held by a :class:`ChatStore`."""

    def __init__(
        self,
        store: ChatStore,
        router: ProviderRouter,
        config: AppConfig | None = None,
        *,
        summarizer: Summarizer | None = None,
        controllers: ChatControllerPool | None = None,
    ) -> None:
        self._store = store
        self._router = router
        self._config = config or AppConfig()
        self._summarizer = summarizer or Summarizer(store, router, self._config)
        self._controllers = controllers or ChatControllerPool()

    @property
    def store(self) -> ChatStore:
        return self._store

    @property
    def controllers(self) -> ChatControllerPool:
        return self._controllers

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _schedule_summarize(self, session_id: str, refresh_title: bool = False) -> None:
        async def job() -> None:
            session = self._store.find_session(session_id)
            if session is not None:
                await self._summarizer.summarize_session(session, refresh_title)

        self._store.tasks.submit(f"summarize:{session_id}", job)

    def summarize_session(self, refresh_title: bool = False) -> None:
        """Queue title/memory summarization for the current session."""
        self._schedule_summarize(self._store.current_session().id, refresh_title)

    async def load_from_server(self) -> None:
        """Replace local sessions with the principal's remote sessions."""
        sync = self._store.sync
        if sync is None:
            return
        sessions = await sync.load()
        self._store.replace_sessions(sessions)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def on_new_message(self, message: ChatMessage, session: ChatSession) -> None:
        """Append an externally produced message and run the follow-up steps."""
        updated = self._store.append_messages(session, [message])
        if updated is None:
            return
        self._store.update_stat(message, updated)
        self._schedule_summarize(session.id)

    def stop(self, session_id: str, message_id: str) -> bool:
        return self._controllers.stop(session_id, message_id)

    async def on_user_input(
        self,
        content: str,
        attach_images: list[str] | None = None,
    ) -> ChatMessage | None:
        """Send user input to the current session's model and stream the reply.

        Returns the stored assistant message once streaming ends, whether it
        finished, failed or was aborted.
        """
        session = self._store.current_session()
        cfg = session.config

        user_content = fill_template_with(content, cfg, lang=self._config.lang)
        logger.debug("[User Input] after template: %s", user_content)

        m_content: str | list[ContentPart] = user_content
        if attach_images:
            parts = [ContentPart(type="text", text=user_content)] if user_content else []
            parts += [
                ContentPart(type="image_url", image_url=ImageUrl(url=u)) for u in attach_images
            ]
            m_content = parts

        user_message = create_message(role=ChatRole.USER, content=m_content)
        bot_message = create_message(role=ChatRole.ASSISTANT, streaming=True, model=cfg.model)

        send_messages = [*build_context_messages(session, lang=self._config.lang), user_message]
        self._store.append_messages(session, [user_message, bot_message])

        request = ChatRequest(
            model=cfg.model,
            messages=send_messages,
            max_tokens=cfg.max_tokens,
            temperature=cfg.temperature,
            top_p=cfg.top_p,
            presence_penalty=cfg.presence_penalty,
            frequency_penalty=cfg.frequency_penalty,
            stream=True,
        )

        task = asyncio.create_task(self._stream_reply(session, bot_message.id, request))
        self._controllers.add(session.id, bot_message.id, task)
        try:
            reply = await task
        except asyncio.CancelledError:
            if not self._controllers.was_aborted(session.id, bot_message.id):
                raise
            note = "The user aborted a request."
            self._on_error(session, user_message.id, bot_message.id, note, aborted=True)
        except Exception as exc:
            logger.error("[Chat] failed: %s", exc)
            self._on_error(session, user_message.id, bot_message.id, str(exc), aborted=False)
        else:
            self._on_finish(session, bot_message.id, reply)
        finally:
            self._controllers.remove(session.id, bot_message.id)

        return self._find_message(session.id, bot_message.id)

    async def _stream_reply(self, session: ChatSession, bot_id: str, request: ChatRequest) -> str:
        provider = self._router.route(str(session.config.provider_name))
        text = ""
        with trace_model_call(request.model, True):
            async for chunk in provider.stream(request):
                if chunk.done:
                    if chunk.status != 200:
                        msg = f"model call returned status {chunk.status}"
                        raise ProviderError(msg, status=chunk.status)
                    break
                text += chunk.delta
                self._update_message(session, bot_id, content=text, streaming=True)
        return text

    def _update_message(
        self, session: ChatSession, message_id: str, sync: bool = False, **fields: object
    ) -> None:
        def apply(s: ChatSession) -> None:
            for i, m in enumerate(s.messages):
                if m.id == message_id:
                    s.messages[i] = m.model_copy(update=fields)
                    return

        self._store.update_target_session(session, apply, sync=sync)

    def _find_message(self, session_id: str, message_id: str) -> ChatMessage | None:
        session = self._store.find_session(session_id)
        if session is None:
            return None
        return next((m for m in session.messages if m.id == message_id), None)

    def _on_finish(self, session: ChatSession, bot_id: str, reply: str) -> None:
        if reply:
            self._update_message(
                session, bot_id, sync=True, content=reply, streaming=False, date=now_string()
            )
            final = self._find_message(session.id, bot_id)
            if final is not None:
                self._store.update_stat(final, session)
            self._schedule_summarize(session.id)
        else:
            self._update_message(session, bot_id, sync=True, streaming=False)

    def _on_error(
        self,
        session: ChatSession,
        user_id: str,
        bot_id: str,
        error: str,
        *,
        aborted: bool,
    ) -> None:
        bot = self._find_message(session.id, bot_id)
        content = bot.content if bot is not None and isinstance(bot.content, str) else ""
        self._update_message(
            session,
            bot_id,
            content=content + _error_note(error),
            streaming=False,
            is_error=not aborted,
        )
        self._update_message(session, user_id, is_error=not aborted, sync=True)
