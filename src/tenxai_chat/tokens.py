"""Token estimation — character-class heuristic, no tokenizer required."""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ChatMessage

_ASCII_LETTER_COST = 0.25
_ASCII_OTHER_COST = 0.5
_NON_ASCII_COST = 1.5


def estimate_tokens(text: str | None) -> int:
    """Estimate token count from text.

    ASCII letters cost a quarter token, other ASCII characters half a token
    and anything outside ASCII (CJK, emoji, ...) one and a half. The sum is
    rounded up so a non-empty string never costs zero.
    """
    if not text:
        return 0
    total = 0.0
    for ch in text:
        code = ord(ch)
        if code < 128:
            if 65 <= code <= 122:
                total += _ASCII_LETTER_COST
            else:
                total += _ASCII_OTHER_COST
        else:
            total += _NON_ASCII_COST
    return math.ceil(total)


def count_message_tokens(messages: Iterable[ChatMessage]) -> int:
    """Sum of estimated tokens over the text content of *messages*."""
    from .models import message_text_content

    return sum(estimate_tokens(message_text_content(m)) for m in messages)


class TokenBudget:
    """Tracks token consumption against a configured maximum."""

    def __init__(self, max_tokens: int) -> None:
        if max_tokens < 0:
            msg = "max_tokens must not be negative"
            raise ValueError(msg)
        self._max = max_tokens
        self._consumed = 0

    def consume(self, tokens: int) -> None:
        self._consumed += tokens

    def remaining(self) -> int:
        return self._max - self._consumed

    def is_exhausted(self) -> bool:
        return self._consumed >= self._max

    def overflow(self) -> int:
        return max(0, self._consumed - self._max)

    @property
    def max_tokens(self) -> int:
        return self._max

    @property
    def consumed(self) -> int:
        return self._consumed
