"""Prompt templates and template substitution."""

from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ModelConfig

DEFAULT_INPUT_TEMPLATE = "{{input}}"

DEFAULT_SYSTEM_TEMPLATE = """
You are ChatGPT, a large language model trained by {{ServiceProvider}}.
Knowledge cutoff: {{cutoff}}
Current model: {{model}}
Current time: {{time}}
Latex inline: \\(x^2\\)
Latex block: $$e=mc^2$$
"""

DEFAULT_TOPIC = "New Conversation"
BOT_HELLO = "Hello! How can I assist you today?"

TOPIC_PROMPT = (
    "Please generate a four to five word title summarizing our conversation "
    "without any lead-in, punctuation, quotation marks, periods, symbols, bold "
    "text, or additional text. Remove enclosing quotation marks."
)
SUMMARIZE_PROMPT = (
    "Summarize the discussion briefly in 200 words or less to use as a prompt "
    "for future context."
)

KNOWLEDGE_CUTOFF: dict[str, str] = {
    "default": "2021-09",
    "gpt-4-turbo": "2023-12",
    "gpt-4-turbo-2024-04-09": "2023-12",
    "gpt-4-turbo-preview": "2023-12",
    "gpt-4o": "2023-10",
    "gpt-4o-2024-05-13": "2023-10",
    "gpt-4o-2024-08-06": "2023-10",
    "gpt-4o-mini": "2023-10",
    "gpt-4o-mini-2024-07-18": "2023-10",
    "gpt-4-vision-preview": "2023-04",
    "o1-mini": "2023-10",
    "o1-preview": "2023-10",
    "gemini-pro": "2023-12",
    "gemini-pro-vision": "2023-12",
}

_INPUT_VAR = "{{input}}"
_TOPIC_EDGE_RE = re.compile(r'^["“”*]+|["“”*]+$')
_TOPIC_TAIL_RE = re.compile(r"[，。！？”“\"、,.!?*]*$")


def history_prompt(memory_prompt: str) -> str:
    """Wrap a summary so the model reads it as a recap of earlier turns."""
    return "This is a summary of the chat history as a recap: " + memory_prompt


def trim_topic(topic: str) -> str:
    """Strip enclosing quotes/asterisks and trailing punctuation from a title."""
    topic = _TOPIC_EDGE_RE.sub("", topic)
    return _TOPIC_TAIL_RE.sub("", topic)


def fill_template_with(
    text: str,
    model_config: ModelConfig,
    *,
    template: str | None = None,
    now: datetime | None = None,
    lang: str = "en",
) -> str:
    """Substitute ``{{var}}`` placeholders of the model's input template.

    The template must contain ``{{input}}``; one is appended when missing.
    When *text* already starts with the raw template it is not applied twice.
    """
    from .models import provider_for_model

    cutoff = KNOWLEDGE_CUTOFF.get(model_config.model, KNOWLEDGE_CUTOFF["default"])
    variables = {
        "ServiceProvider": provider_for_model(model_config.model) or "OpenAI",
        "cutoff": cutoff,
        "model": model_config.model,
        "time": (now or datetime.now()).strftime("%a %b %d %Y %H:%M:%S"),
        "lang": lang,
        "input": text,
    }

    output = template if template is not None else (model_config.template or DEFAULT_INPUT_TEMPLATE)
    if text.startswith(output):
        output = ""
    if _INPUT_VAR not in output:
        output += "\n" + _INPUT_VAR

    for name, value in variables.items():
        output = output.replace("{{" + name + "}}", str(value))
    return output
