"""Context assembly — decide exactly which messages go to the model.

The outbound list has four parts, in order:

0. an injected system prompt (``gpt-`` / ``chatgpt-`` models only),
1. long-term memory: the summary of older turns,
2. the mask's static in-context prompts,
3. short-term memory: the most recent messages that fit ``max_tokens``.

Only part 3 is counted against the token budget.
"""

from __future__ import annotations

import logging
from datetime import datetime

from .models import ChatMessage, ChatRole, ChatSession, create_message, message_text_content
from .telemetry import trace_context_assembly
from .templates import DEFAULT_SYSTEM_TEMPLATE, fill_template_with, history_prompt
from .tokens import TokenBudget, estimate_tokens

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT_PREFIXES = ("gpt-", "chatgpt-")


def should_inject_system_prompt(session: ChatSession) -> bool:
    cfg = session.config
    return cfg.enable_inject_system_prompts and cfg.model.startswith(_SYSTEM_PROMPT_PREFIXES)


def system_prompt_message(
    session: ChatSession, *, now: datetime | None = None, lang: str = "en"
) -> ChatMessage:
    content = fill_template_with(
        "", session.config, template=DEFAULT_SYSTEM_TEMPLATE, now=now, lang=lang
    )
    return create_message(role=ChatRole.SYSTEM, content=content)


def memory_prompt_message(session: ChatSession) -> ChatMessage | None:
    """The long-term memory as a system message, or ``None`` if there is none."""
    if not session.memory_prompt:
        return None
    content = history_prompt(session.memory_prompt)
    return create_message(role=ChatRole.SYSTEM, content=content, date="")


def should_send_long_term_memory(session: ChatSession) -> bool:
    clear_index = session.clear_context_index or 0
    return (
        session.config.send_memory
        and bool(session.memory_prompt)
        and session.last_summarize_index > clear_index
    )


def context_start_index(session: ChatSession) -> int:
    """Index of the oldest message eligible for the short-term segment."""
    cfg = session.config
    total = len(session.messages)
    clear_index = session.clear_context_index or 0

    short_term_start = max(0, total - cfg.history_message_count)
    if should_send_long_term_memory(session):
        memory_start = min(session.last_summarize_index, short_term_start)
    else:
        memory_start = short_term_start
    # a cleared context hides the memory too
    return max(clear_index, memory_start)


def recent_messages(session: ChatSession, start: int, max_tokens: int) -> list[ChatMessage]:
    """Walk backward from the newest message, skipping errors, within budget."""
    budget = TokenBudget(max(0, max_tokens))
    collected: list[ChatMessage] = []
    i = len(session.messages) - 1
    while i >= start and not budget.is_exhausted():
        msg = session.messages[i]
        i -= 1
        if msg.is_error:
            continue
        budget.consume(estimate_tokens(message_text_content(msg)))
        collected.append(msg)
    collected.reverse()
    return collected


def build_context_messages(
    session: ChatSession,
    *,
    now: datetime | None = None,
    lang: str = "en",
) -> list[ChatMessage]:
    """Assemble the ordered message list to submit for a model call."""
    with trace_context_assembly(session.id) as span:
        system_prompts: list[ChatMessage] = []
        if should_inject_system_prompt(session):
            system_prompts.append(system_prompt_message(session, now=now, lang=lang))
            logger.debug("Injected global system prompt for %s", session.config.model)

        memory_prompts: list[ChatMessage] = []
        if should_send_long_term_memory(session):
            memory = memory_prompt_message(session)
            if memory is not None:
                memory_prompts.append(memory)

        start = context_start_index(session)
        recent = recent_messages(session, start, session.config.max_tokens)
        context_prompts = list(session.mask.context)

        span.set_attribute("context.recent_count", len(recent))
        span.set_attribute("context.start_index", start)
        return [*system_prompts, *memory_prompts, *context_prompts, *recent]
