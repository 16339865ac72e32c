"""OpenAI-compatible HTTP provider — ``/v1/chat/completions`` over requests."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator
from typing import Any

import requests

from .errors import ProviderError
from .models import ChatMessage, ServiceProvider
from .provider import (
    ChatRequest,
    ChatResponse,
    LLMProvider,
    ProviderCapabilities,
    StreamChunk,
    TokenUsage,
)

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.openai.com"
_DEFAULT_TIMEOUT = 120.0
_SSE_PREFIX = "data:"
_SSE_DONE = "[DONE]"


def _wire_message(message: ChatMessage) -> dict[str, Any]:
    if isinstance(message.content, str):
        content: Any = message.content
    else:
        content = [part.model_dump(exclude_none=True) for part in message.content]
    return {"role": str(message.role), "content": content}


class OpenAIProvider(LLMProvider):
    """Talks to any server implementing the OpenAI chat completions API.

    Configuration via environment variables:
        - ``OPENAI_API_KEY``: bearer token
        - ``OPENAI_BASE_URL``: server root (default ``https://api.openai.com``)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        provider_name: str = ServiceProvider.OPENAI,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        root = (base_url or os.environ.get("OPENAI_BASE_URL", _DEFAULT_BASE_URL)).rstrip("/")
        self._url = f"{root}/v1/chat/completions"
        self._timeout = timeout
        self._name = str(provider_name)
        self._http = session or requests.Session()

    def name(self) -> str:
        return self._name

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(vision=True, streaming=True)

    # ------------------------------------------------------------------

    def _payload(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [_wire_message(m) for m in request.messages],
            "stream": stream,
        }
        for key in ("max_tokens", "temperature", "top_p", "presence_penalty", "frequency_penalty"):
            value = getattr(request, key)
            if value is not None:
                payload[key] = value
        return payload

    def _post(self, payload: dict[str, Any], stream: bool) -> requests.Response:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return self._http.post(
            self._url, json=payload, headers=headers, timeout=self._timeout, stream=stream
        )

    @staticmethod
    def _usage(data: dict[str, Any]) -> TokenUsage | None:
        usage = data.get("usage")
        if not usage:
            return None
        return TokenUsage(
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        )

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Non-streaming completion."""
        try:
            resp = await asyncio.to_thread(self._post, self._payload(request, False), False)
        except requests.RequestException as exc:
            msg = f"chat completion request failed: {exc}"
            raise ProviderError(msg) from exc

        if resp.status_code != 200:
            msg = f"chat completion failed ({resp.status_code}): {resp.text}"
            raise ProviderError(msg, status=resp.status_code)

        data = resp.json()
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return ChatResponse(content=content, status=resp.status_code, usage=self._usage(data))

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Streaming completion over server-sent events."""
        try:
            resp = await asyncio.to_thread(self._post, self._payload(request, True), True)
        except requests.RequestException as exc:
            msg = f"chat completion request failed: {exc}"
            raise ProviderError(msg) from exc

        if resp.status_code != 200:
            text = resp.text
            resp.close()
            msg = f"chat completion failed ({resp.status_code}): {text}"
            raise ProviderError(msg, status=resp.status_code)

        # event streams are UTF-8 whatever charset the response headers imply
        lines = resp.iter_lines()
        usage: TokenUsage | None = None
        try:
            while True:
                raw = await asyncio.to_thread(next, lines, None)
                if raw is None:
                    break
                line = raw.decode("utf-8", errors="replace")
                if not line or not line.startswith(_SSE_PREFIX):
                    continue
                body = line[len(_SSE_PREFIX):].strip()
                if body == _SSE_DONE:
                    break
                try:
                    event = json.loads(body)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed SSE line: %s", body)
                    continue
                usage = self._usage(event) or usage
                for choice in event.get("choices") or []:
                    delta = (choice.get("delta") or {}).get("content")
                    if delta:
                        yield StreamChunk(delta=delta)
        finally:
            resp.close()

        yield StreamChunk(done=True, status=resp.status_code, usage=usage)
