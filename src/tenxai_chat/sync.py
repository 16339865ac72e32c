"""Server sync adapter — mirrors local sessions to the chat-log backend.

Local state is the source of truth; the remote copy is a best-effort mirror.
Nothing here raises to the caller: failures are logged and the method
reports them through its return value.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .chat_logs import ChatLog, ChatLogClient, utc_now_iso
from .errors import ChatLogError, NotFoundError
from .models import ChatMessage, ChatSession, ChatStat, create_empty_session
from .telemetry import get_tracer, trace_sync
from .templates import DEFAULT_TOPIC

logger = logging.getLogger(__name__)

_LOAD_LIMIT = 50


def wire_message(message: ChatMessage) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": message.id,
        "role": str(message.role),
        "content": message.content
        if isinstance(message.content, str)
        else [p.model_dump(exclude_none=True) for p in message.content],
        "date": message.date,
    }
    if message.is_error:
        data["isError"] = True
    if message.tools:
        data["tools"] = [t.model_dump(exclude_none=True) for t in message.tools]
    if message.audio_url:
        data["audio_url"] = message.audio_url
    return data


def create_payload(session: ChatSession) -> dict[str, Any]:
    """Body for creating or restoring a chat log with real token stats."""
    return {
        "chatId": session.id,
        "modelId": session.config.model,
        "topic": session.topic,
        "messages": [wire_message(m) for m in session.messages],
        "tokenUsage": {
            "promptTokens": session.stat.token_count,
            "completionTokens": 0,
            "totalTokens": session.stat.token_count,
        },
        "cost": 0,
    }


def sync_payload(session: ChatSession, *, create: bool) -> dict[str, Any]:
    """Body for the check-then-create-or-patch sync.

    ``tokenUsage`` carries the configured ``max_tokens`` rather than measured
    usage, matching what the backend has always received on this path.
    """
    payload: dict[str, Any] = {
        "messages": [wire_message(m) for m in session.messages],
        "modelId": session.config.model,
        "topic": session.topic,
        "tokenUsage": session.config.max_tokens,
        "cost": 0,
    }
    if create:
        payload["chatId"] = session.id
        payload["createdAt"] = utc_now_iso()
    else:
        payload["updatedAt"] = utc_now_iso()
    return payload


def session_from_chat_log(chat_log: ChatLog) -> ChatSession:
    messages = []
    for msg in chat_log.messages:
        data = msg.model_dump(exclude_none=True, exclude={"timestamp"})
        if msg.timestamp is not None:
            data["date"] = msg.timestamp.astimezone().strftime("%m/%d/%Y, %I:%M:%S %p")
        messages.append(ChatMessage.model_validate(data))

    session = ChatSession(
        id=chat_log.chat_id,
        topic=chat_log.topic or DEFAULT_TOPIC,
        messages=messages,
        stat=ChatStat(token_count=chat_log.total_tokens),
        last_summarize_index=0,
    )
    if chat_log.created_at is not None:
        session.last_update = chat_log.created_at.timestamp()
    return session


class ServerSyncAdapter:
    """Pushes and pulls sessions through a :class:`ChatLogClient`."""

    def __init__(self, client: ChatLogClient) -> None:
        self._client = client

    @property
    def authenticated(self) -> bool:
        return bool(self._client.user_id)

    async def sync(self, session: ChatSession) -> str | None:
        """Create the remote record if missing, otherwise patch it.

        Returns ``"created"``, ``"patched"`` or ``None`` when skipped or failed.
        """
        if not self.authenticated:
            logger.debug("No user session found, skipping sync of %s", session.id)
            return None

        logger.debug("Syncing %s (%d messages)", session.id, len(session.messages))
        with trace_sync(session.id, "sync") as span:
            try:
                try:
                    await asyncio.to_thread(self._client.get_chat_log, session.id)
                except NotFoundError:
                    logger.info("Chat log %s not found remotely, creating it", session.id)
                    await asyncio.to_thread(
                        self._client.create_chat_log, sync_payload(session, create=True)
                    )
                    span.set_attribute("sync.result", "created")
                    get_tracer().record_event("chat_log.created", {"chat.id": session.id})
                    return "created"

                await asyncio.to_thread(
                    self._client.update_chat_log, session.id, sync_payload(session, create=False)
                )
            except ChatLogError as exc:
                logger.warning("Failed to sync chat log %s: %s", session.id, exc)
                return None
            except Exception:
                logger.exception("Failed to sync chat log %s", session.id)
                return None

            span.set_attribute("sync.result", "patched")
            return "patched"

    async def load(self) -> list[ChatSession]:
        """Fetch every remote session of the principal, page by page.

        Falls back to a single empty session when unauthenticated, when the
        server has nothing, or when the request fails.
        """
        if not self.authenticated:
            logger.info("No authenticated user found, using default session")
            return [create_empty_session()]

        sessions: list[ChatSession] = []
        offset = 0
        with trace_sync("*", "load"):
            try:
                while True:
                    page = await asyncio.to_thread(
                        self._client.list_chat_logs, _LOAD_LIMIT, offset
                    )
                    sessions.extend(session_from_chat_log(log) for log in page.chat_logs)
                    offset += _LOAD_LIMIT
                    if not page.chat_logs or offset >= page.pagination.total:
                        break
            except Exception:
                logger.exception("Failed to load chats from server")
                return [create_empty_session()]

        if not sessions:
            logger.info("No chats found on server, using default session")
            return [create_empty_session()]

        logger.info("Loaded %d sessions from server", len(sessions))
        return sessions

    async def create(self, session: ChatSession) -> bool:
        return await self._best_effort(
            "create", session.id, self._client.create_chat_log, create_payload(session)
        )

    async def restore(self, session: ChatSession) -> bool:
        return await self._best_effort(
            "restore", session.id, self._client.create_chat_log, create_payload(session)
        )

    async def delete(self, session_id: str) -> bool:
        return await self._best_effort(
            "delete", session_id, self._client.delete_chat_log, session_id
        )

    async def _best_effort(self, operation: str, session_id: str, fn: Any, *args: Any) -> bool:
        if not self.authenticated:
            return False
        with trace_sync(session_id, operation):
            try:
                await asyncio.to_thread(fn, *args)
            except Exception:
                logger.exception("Failed to %s chat log %s", operation, session_id)
                return False
        logger.info("Chat log %s: %s succeeded", session_id, operation)
        return True
