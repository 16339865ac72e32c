"""Tests for the server sync adapter (the REST client is mocked)."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from tenxai_chat.chat_logs import ChatLog, ChatLogPage, Pagination
from tenxai_chat.errors import NotFoundError, ServerError
from tenxai_chat.models import ChatMessage, ChatRole, ChatSession, Mask, ModelConfig
from tenxai_chat.sync import (
    ServerSyncAdapter,
    create_payload,
    session_from_chat_log,
    sync_payload,
    wire_message,
)
from tenxai_chat.templates import DEFAULT_TOPIC


def _client(user_id: str | None = "user-1") -> MagicMock:
    client = MagicMock()
    client.user_id = user_id
    return client


def _session() -> ChatSession:
    return ChatSession(
        topic="Cats",
        messages=[
            ChatMessage(role=ChatRole.USER, content="hi"),
            ChatMessage(role=ChatRole.ASSISTANT, content="hello", is_error=True),
        ],
        mask=Mask(config=ModelConfig(model="gpt-4o", max_tokens=2048)),
    )


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


def test_wire_message_uses_camel_error_flag():
    session = _session()
    assert "isError" not in wire_message(session.messages[0])
    assert wire_message(session.messages[1])["isError"] is True
    assert wire_message(session.messages[0])["role"] == "user"


def test_sync_payload_create_and_patch():
    session = _session()

    created = sync_payload(session, create=True)
    assert created["chatId"] == session.id
    assert "createdAt" in created
    assert created["modelId"] == "gpt-4o"
    assert created["tokenUsage"] == 2048

    patched = sync_payload(session, create=False)
    assert "chatId" not in patched
    assert "updatedAt" in patched
    assert len(patched["messages"]) == 2


def test_create_payload_carries_token_stats():
    session = _session()
    session.stat.token_count = 42
    payload = create_payload(session)
    assert payload["tokenUsage"] == {"promptTokens": 42, "completionTokens": 0, "totalTokens": 42}


def test_session_from_chat_log():
    log = ChatLog.model_validate(
        {
            "chatId": "c1",
            "topic": "",
            "messages": [
                {"id": "m1", "role": "user", "content": "hi", "timestamp": "2024-05-01T12:00:00Z"},
                {"id": "m2", "role": "assistant", "content": "yo", "isError": True},
            ],
            "tokenUsage": {"totalTokens": 12},
            "createdAt": "2024-05-01T12:00:00Z",
        }
    )
    session = session_from_chat_log(log)
    assert session.id == "c1"
    assert session.topic == DEFAULT_TOPIC
    assert [m.id for m in session.messages] == ["m1", "m2"]
    assert session.messages[1].is_error is True
    assert session.messages[0].date
    assert session.stat.token_count == 12
    assert session.last_summarize_index == 0
    assert session.last_update == datetime(2024, 5, 1, 12, tzinfo=UTC).timestamp()


# ---------------------------------------------------------------------------
# sync()
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sync_creates_when_missing_remotely():
    client = _client()
    client.get_chat_log.side_effect = NotFoundError("not found")
    adapter = ServerSyncAdapter(client)
    session = _session()

    result = await adapter.sync(session)

    assert result == "created"
    client.create_chat_log.assert_called_once()
    client.update_chat_log.assert_not_called()
    payload = client.create_chat_log.call_args.args[0]
    assert payload["chatId"] == session.id


@pytest.mark.asyncio
async def test_sync_patches_when_present():
    client = _client()
    client.get_chat_log.return_value = ChatLog(chat_id="c1")
    adapter = ServerSyncAdapter(client)
    session = _session()

    result = await adapter.sync(session)

    assert result == "patched"
    client.create_chat_log.assert_not_called()
    client.update_chat_log.assert_called_once()
    chat_id, payload = client.update_chat_log.call_args.args
    assert chat_id == session.id
    assert "updatedAt" in payload


@pytest.mark.asyncio
async def test_sync_failure_is_swallowed():
    client = _client()
    client.get_chat_log.side_effect = ServerError("down", status=500)
    adapter = ServerSyncAdapter(client)

    assert await adapter.sync(_session()) is None
    client.create_chat_log.assert_not_called()
    client.update_chat_log.assert_not_called()


@pytest.mark.asyncio
async def test_sync_unexpected_error_is_swallowed():
    client = _client()
    client.get_chat_log.return_value = ChatLog(chat_id="c1")
    client.update_chat_log.side_effect = RuntimeError("bug")
    adapter = ServerSyncAdapter(client)

    assert await adapter.sync(_session()) is None


@pytest.mark.asyncio
async def test_sync_skipped_without_principal():
    client = _client(user_id=None)
    adapter = ServerSyncAdapter(client)

    assert await adapter.sync(_session()) is None
    client.get_chat_log.assert_not_called()


# ---------------------------------------------------------------------------
# load()
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_load_converts_remote_sessions():
    client = _client()
    client.list_chat_logs.return_value = ChatLogPage(
        chat_logs=[ChatLog(chat_id="c1", topic="A"), ChatLog(chat_id="c2", topic="B")]
    )
    sessions = await ServerSyncAdapter(client).load()
    assert [s.id for s in sessions] == ["c1", "c2"]
    client.list_chat_logs.assert_called_once_with(50, 0)


@pytest.mark.asyncio
async def test_load_follows_pagination_to_the_last_page():
    def page(start: int, count: int) -> ChatLogPage:
        return ChatLogPage(
            chat_logs=[ChatLog(chat_id=f"c{i}") for i in range(start, start + count)],
            pagination=Pagination(total=60, offset=start, limit=50),
        )

    client = _client()
    client.list_chat_logs.side_effect = [page(0, 50), page(50, 10)]

    sessions = await ServerSyncAdapter(client).load()

    assert len(sessions) == 60
    assert sessions[-1].id == "c59"
    assert [c.args for c in client.list_chat_logs.call_args_list] == [(50, 0), (50, 50)]


@pytest.mark.asyncio
async def test_load_stops_on_an_empty_page():
    client = _client()
    client.list_chat_logs.side_effect = [
        ChatLogPage(chat_logs=[ChatLog(chat_id="c1")], pagination=Pagination(total=500)),
        ChatLogPage(pagination=Pagination(total=500)),
    ]

    sessions = await ServerSyncAdapter(client).load()

    assert [s.id for s in sessions] == ["c1"]
    assert client.list_chat_logs.call_count == 2


@pytest.mark.asyncio
async def test_load_falls_back_to_one_empty_session():
    empty = _client()
    empty.list_chat_logs.return_value = ChatLogPage()
    failing = _client()
    failing.list_chat_logs.side_effect = ServerError("down", status=500)
    anonymous = _client(user_id=None)

    for client in (empty, failing, anonymous):
        sessions = await ServerSyncAdapter(client).load()
        assert len(sessions) == 1
        assert sessions[0].messages == []

    anonymous.list_chat_logs.assert_not_called()


# ---------------------------------------------------------------------------
# Best-effort operations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_restore_delete():
    client = _client()
    adapter = ServerSyncAdapter(client)
    session = _session()

    assert await adapter.create(session) is True
    assert await adapter.restore(session) is True
    assert await adapter.delete(session.id) is True
    assert client.create_chat_log.call_count == 2
    client.delete_chat_log.assert_called_once_with(session.id)


@pytest.mark.asyncio
async def test_best_effort_failure_returns_false():
    client = _client()
    client.delete_chat_log.side_effect = ServerError("down", status=500)
    assert await ServerSyncAdapter(client).delete("c1") is False
