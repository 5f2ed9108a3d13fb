"""Helpers that normalize message content between text and multimodal shapes."""

from __future__ import annotations

from typing import Any, Iterable, Optional

MessageContent = Any


def flatten_to_text(content: MessageContent) -> str:
    """Collapse message content to plain text.

    Strings are returned unchanged. For part arrays, every ``text`` part is kept
    in order and joined with single spaces; images and other parts are dropped.
    Anything else yields an empty string.
    """

    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: list[str] = []
        for part in content:
            if not isinstance(part, dict) or part.get("type") != "text":
                continue
            text = part.get("text")
            if isinstance(text, str) and text:
                texts.append(text)
        return " ".join(texts)
    return ""


def to_multimodal(
    content: MessageContent, fallback_reasoning: Optional[str] = None
) -> MessageContent:
    """Return content suitable for storing or displaying as an assistant reply.

    Reasoning models sometimes answer with an empty ``content`` and put the text
    into ``reasoning`` instead; in that case the reasoning is used.
    """

    if isinstance(content, list):
        return content
    blank = content is None or (isinstance(content, str) and not content.strip())
    if blank and fallback_reasoning:
        return str(fallback_reasoning)
    if content is None:
        return ""
    return content


def merge_images_into_content(
    text: str, images: Iterable[dict[str, Any]]
) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    if text and text.strip():
        parts.append({"type": "text", "text": text})
    parts.extend(images)
    return parts


def derive_title(content: MessageContent, limit: int = 50) -> Optional[str]:
    """Build a chat title from the first text of a message."""

    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        text = ""
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                candidate = part.get("text")
                if isinstance(candidate, str) and candidate:
                    text = candidate
                    break
    else:
        text = ""
    text = text.strip()
    if not text:
        return None
    if len(text) > limit:
        return text[:limit] + "..."
    return text


__all__ = [
    "derive_title",
    "flatten_to_text",
    "merge_images_into_content",
    "to_multimodal",
]
