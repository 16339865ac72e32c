"""REST client for the chat backend (``/api/chat-logs`` and friends).

Every request carries the principal in the ``user-id`` header. Non-2xx
responses are raised as the typed errors of :mod:`tenxai_chat.errors`.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import ApiEnvelope, ChatLogError, UnauthorizedError, error_for_status

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0

# ---------------------------------------------------------------------------
# Wire records
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RemoteTokenUsage(_CamelModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class RemoteMessage(_CamelModel):
    """A message as stored by the server (``timestamp`` instead of ``date``)."""

    id: str
    role: str
    content: Any = ""
    timestamp: datetime | None = None
    is_error: bool | None = None
    tools: list[dict[str, Any]] | None = None
    audio_url: str | None = None


class ChatLog(_CamelModel):
    """Server-side mirror of a chat session, keyed by ``chat_id``."""

    chat_id: str
    user_id: str | None = None
    model_id: str = ""
    topic: str = ""
    messages: list[RemoteMessage] = Field(default_factory=list)
    token_usage: RemoteTokenUsage | int | None = None
    cost: float = 0
    created_at: datetime | None = None

    @property
    def total_tokens(self) -> int:
        if isinstance(self.token_usage, RemoteTokenUsage):
            return self.token_usage.total_tokens
        return self.token_usage or 0


class Pagination(BaseModel):
    total: int = 0
    offset: int = 0
    limit: int = 50


class ChatLogPage(_CamelModel):
    chat_logs: list[ChatLog] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ChatLogClient:
    """Thin synchronous client over ``requests.Session``."""

    def __init__(
        self,
        base_url: str,
        user_id: str | None,
        session: requests.Session | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_id = user_id
        self._http = session or requests.Session()
        self._timeout = timeout

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        if not self._user_id:
            msg = "Unauthorized: No user ID provided"
            raise UnauthorizedError(msg)

        headers = {"user-id": self._user_id}
        if json is not None:
            headers["Content-Type"] = "application/json"
        try:
            resp = self._http.request(
                method,
                f"{self._base_url}{path}",
                headers=headers,
                json=json,
                params=params,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            msg = f"{method} {path} failed: {exc}"
            raise ChatLogError(msg) from exc

        if not resp.ok:
            msg = f"{method} {path} failed ({resp.status_code}): {resp.text}"
            raise error_for_status(resp.status_code, msg)

        logger.debug("%s %s -> %s", method, path, resp.status_code)
        if not resp.content:
            return None
        return resp.json()

    # -- chat logs ----------------------------------------------------------

    def list_chat_logs(self, limit: int = 50, offset: int = 0) -> ChatLogPage:
        data = self._request("GET", "/api/chat-logs", params={"limit": limit, "offset": offset})
        return ChatLogPage.model_validate(data or {})

    def get_chat_log(self, chat_id: str) -> ChatLog:
        return ChatLog.model_validate(self._request("GET", f"/api/chat-logs/{chat_id}"))

    def create_chat_log(self, payload: dict[str, Any]) -> ChatLog:
        return ChatLog.model_validate(self._request("POST", "/api/chat-logs", json=payload))

    def update_chat_log(self, chat_id: str, payload: dict[str, Any]) -> ChatLog:
        return ChatLog.model_validate(
            self._request("PATCH", f"/api/chat-logs/{chat_id}", json=payload)
        )

    def delete_chat_log(self, chat_id: str) -> None:
        self._request("DELETE", f"/api/chat-logs/{chat_id}")

    def delete_all_chat_logs(self) -> None:
        self._request("DELETE", "/api/chat-logs")

    # -- user settings ------------------------------------------------------

    def get_user_settings(self) -> ApiEnvelope:
        return ApiEnvelope.model_validate(self._request("GET", "/api/user-settings"))

    def put_user_settings(self, settings: dict[str, Any]) -> ApiEnvelope:
        return ApiEnvelope.model_validate(self._request("PUT", "/api/user-settings", json=settings))

    # -- configurations -----------------------------------------------------

    def get_configuration(self) -> list[dict[str, Any]]:
        return self._request("GET", "/api/configurations") or []

    def create_configuration(self, configuration: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/api/configurations", json=configuration)

    def update_configuration(self, configuration: dict[str, Any]) -> dict[str, Any]:
        return self._request("PUT", "/api/configurations", json=configuration)


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()
