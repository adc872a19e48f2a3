"""
Chat request validation.

Turns the raw JSON body of POST /api/chat into a bounded, sanitized
ChatRequest. Invalid history entries are dropped rather than rejected; only the
message itself can fail the request.
"""

import re
from typing import Any, List, Literal

from pydantic import BaseModel, Field

from rag.config import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES
from rag.errors import ValidationError

MAX_MESSAGE_CHARS = 500
MAX_HISTORY_MESSAGES = 6
MAX_HISTORY_CHARS = 2000

ALLOWED_ROLES = ("user", "assistant")

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1)


class ChatRequest(BaseModel):
    """Validated chat request (lives for one HTTP call)."""

    message: str = Field(..., min_length=1)
    history: List[HistoryMessage] = Field(default_factory=list)
    lang: str = DEFAULT_LANGUAGE


def sanitize_message(text: str) -> str:
    """Strip HTML-like tags and collapse runs of whitespace."""
    without_tags = _TAG_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", without_tags).strip()


def normalize_history(raw: Any, max_messages: int = MAX_HISTORY_MESSAGES,
                      max_chars: int = MAX_HISTORY_CHARS) -> List[HistoryMessage]:
    """Keep well-formed entries only, then the most recent ``max_messages``."""
    if not isinstance(raw, list):
        return []

    kept: List[HistoryMessage] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        role = entry.get("role")
        content = entry.get("content")
        if role not in ALLOWED_ROLES or not isinstance(content, str):
            continue
        content = content.strip()
        if not content or len(content) > max_chars:
            continue
        kept.append(HistoryMessage(role=role, content=content))

    return kept[-max_messages:] if max_messages > 0 else []


def normalize_language(raw: Any) -> str:
    if isinstance(raw, str) and raw.strip().lower() in SUPPORTED_LANGUAGES:
        return raw.strip().lower()
    return DEFAULT_LANGUAGE


def parse_chat_request(body: Any, max_message_chars: int = MAX_MESSAGE_CHARS,
                       max_history_messages: int = MAX_HISTORY_MESSAGES,
                       max_history_chars: int = MAX_HISTORY_CHARS) -> ChatRequest:
    """
    Validate a decoded JSON body.

    Raises:
        ValidationError: Body is not an object, or the message is missing,
            empty, or longer than ``max_message_chars``
    """
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")

    message = body.get("message")
    if message is None or not isinstance(message, str) or not message.strip():
        raise ValidationError("Message is required")

    message = message.strip()
    if len(message) > max_message_chars:
        raise ValidationError(f"Message too long (max {max_message_chars} chars)")

    message = sanitize_message(message)
    if not message:
        raise ValidationError("Message is required")

    return ChatRequest(
        message=message,
        history=normalize_history(body.get("history"), max_history_messages, max_history_chars),
        lang=normalize_language(body.get("lang")),
    )
