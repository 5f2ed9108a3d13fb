"""Per-provider rewriting of multimodal message parts before sending upstream."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Sequence

_DATA_URL_MIME = re.compile(r"^data:([^;]+)")

_EXTENSION_MIME_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "md": "text/markdown",
    "json": "application/json",
}

DEFAULT_MIME_TYPE = "image/png"

PartRewriter = Callable[[dict[str, Any]], dict[str, Any]]


def guess_mime_type(url: str) -> str:
    """Return the MIME type declared by a data URL or implied by its extension."""

    if url.startswith("data:"):
        match = _DATA_URL_MIME.match(url)
        if match and match.group(1):
            return match.group(1)
    extension = url.rsplit(".", 1)[-1].lower().split("?", 1)[0]
    return _EXTENSION_MIME_TYPES.get(extension, DEFAULT_MIME_TYPE)


def _image_url_of(part: Mapping[str, Any]) -> str | None:
    image = part.get("image_url")
    if isinstance(image, Mapping) and isinstance(image.get("url"), str):
        return image["url"]
    return None


def _rewrite_default(part: dict[str, Any]) -> dict[str, Any]:
    if part.get("type") == "image_url":
        url = _image_url_of(part)
        if url is not None:
            return {
                "type": "image_url",
                "image_url": {"url": url, "mimetype": guess_mime_type(url)},
            }
    return dict(part)


def _rewrite_gemini(part: dict[str, Any]) -> dict[str, Any]:
    kind = part.get("type")
    if kind == "image_url":
        url = _image_url_of(part)
        if url is not None:
            return {
                "type": "image_url",
                "imageUrl": {"url": url, "mimeType": guess_mime_type(url)},
            }
    elif kind == "text" and part.get("text"):
        return {"type": "text", "text": part["text"]}
    elif kind == "file" and isinstance(part.get("file"), Mapping):
        file_info = part["file"]
        return {
            "type": "file",
            "file": {"url": file_info.get("url"), "filename": file_info.get("filename")},
        }
    return dict(part)


@dataclass(frozen=True)
class ProviderStrategy:
    """How one model family expects multimodal parts to be shaped."""

    name: str
    prefixes: tuple[str, ...]
    rewrite_part: PartRewriter

    def matches(self, model: str) -> bool:
        return any(model.startswith(prefix) for prefix in self.prefixes)


GEMINI_STRATEGY = ProviderStrategy("gemini", ("google/gemini",), _rewrite_gemini)
DEFAULT_STRATEGY = ProviderStrategy("default", (), _rewrite_default)

PROVIDER_STRATEGIES: tuple[ProviderStrategy, ...] = (GEMINI_STRATEGY,)


def strategy_for_model(
    model: str, strategies: Iterable[ProviderStrategy] = PROVIDER_STRATEGIES
) -> ProviderStrategy:
    for strategy in strategies:
        if strategy.matches(model):
            return strategy
    return DEFAULT_STRATEGY


def is_gemini_model(model: str) -> bool:
    return strategy_for_model(model) is GEMINI_STRATEGY


def transform_messages_for_provider(
    messages: Sequence[Mapping[str, Any]], model: str
) -> list[dict[str, Any]]:
    """Return new messages with parts rewritten for ``model``'s provider.

    String contents are passed through; input objects are never mutated.
    """

    strategy = strategy_for_model(model)
    transformed: list[dict[str, Any]] = []
    for message in messages:
        copy = dict(message)
        content = message.get("content")
        if isinstance(content, list):
            copy["content"] = [
                strategy.rewrite_part(part) if isinstance(part, dict) else part
                for part in content
            ]
        transformed.append(copy)
    return transformed


def build_request_body(model: str, messages: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    """Return the non-streaming completion payload for ``model``."""

    body: dict[str, Any] = {
        "model": model,
        "messages": list(messages),
        "stream": False,
    }
    lowered = model.lower()
    if "gemini" in lowered and "image" in lowered:
        body["modalities"] = ["image", "text"]
        body["extra_body"] = {
            "responseModalities": ["TEXT", "IMAGE"],
            "imageConfig": {"aspectRatio": "16:9", "imageSize": "2K"},
        }
    return body


__all__ = [
    "DEFAULT_STRATEGY",
    "GEMINI_STRATEGY",
    "PROVIDER_STRATEGIES",
    "ProviderStrategy",
    "build_request_body",
    "guess_mime_type",
    "is_gemini_model",
    "strategy_for_model",
    "transform_messages_for_provider",
]
