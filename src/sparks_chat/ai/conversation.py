"""Convert conversation history to Anthropic API message format."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Sequence

from sparks_chat.core.types import Role
from sparks_chat.storage.models import Memory, Message

_TEXT_PREFIXES = ("text/",)
_TEXT_TYPES = frozenset({
    "application/json", "application/xml", "application/javascript",
    "application/x-yaml", "application/sql", "application/x-sh",
    "application/xhtml+xml", "application/csv",
})


@dataclass(frozen=True, slots=True)
class Attachment:
    """Binary attachment (image, file, etc.) sent along with a user message."""

    data: bytes
    media_type: str  # e.g. "image/jpeg", "image/png"
    filename: str = "attachment"


def _is_text_media_type(media_type: str) -> bool:
    """Return True if the media type represents a human-readable text format."""
    return media_type.startswith(_TEXT_PREFIXES) or media_type in _TEXT_TYPES


def build_system_prompt(base_prompt: str, memories: Sequence[Memory] = ()) -> str:
    """Base instructions plus the user's remembered facts as a bullet list."""
    if not memories:
        return base_prompt
    lines = "\n".join(f"- {memory.content}" for memory in memories)
    return f"{base_prompt}\n\nHere are some important things to remember about this user:\n{lines}"


def build_messages(
    history: Sequence[Message],
    current_attachments: Sequence[Attachment] | None = None,
) -> list[dict[str, Any]]:
    """Convert stored messages into Anthropic API messages format.

    Consecutive messages with the same role are merged, since the API requires
    alternating turns. If *current_attachments* are provided, the last user
    message is converted to a multimodal content list with the attachment
    blocks appended.
    """
    messages: list[dict[str, Any]] = []
    for record in history:
        role = "assistant" if record.role == Role.ASSISTANT else "user"
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] = f"{messages[-1]['content']}\n\n{record.content}"
        else:
            messages.append({"role": role, "content": record.content})

    if current_attachments and messages:
        for idx in range(len(messages) - 1, -1, -1):
            msg = messages[idx]
            if msg.get("role") != "user":
                continue
            content = msg["content"]
            if isinstance(content, str):
                content = [{"type": "text", "text": content}]
            content.extend(_attachment_block(att) for att in current_attachments)
            messages[idx]["content"] = content
            break

    return messages


def _attachment_block(att: Attachment) -> dict[str, Any]:
    if att.media_type.startswith("image/"):
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": att.media_type,
                "data": base64.b64encode(att.data).decode(),
            },
        }
    if _is_text_media_type(att.media_type):
        text_content = att.data.decode("utf-8", errors="replace")
        return {"type": "text", "text": f"[File: {att.filename}]\n{text_content}"}
    # Binary file: include metadata only
    size_kb = len(att.data) / 1024
    return {
        "type": "text",
        "text": (
            f"[File: {att.filename} "
            f"({att.media_type}, {size_kb:.1f} KB), binary file, content not shown]"
        ),
    }


def conversation_text(history: Sequence[Message]) -> str:
    """All message content joined with spaces, used for pre-flight token estimates."""
    return " ".join(record.content for record in history)
