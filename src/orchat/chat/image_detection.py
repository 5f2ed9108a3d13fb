"""Locate generated images in a completion response, whatever shape they take."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME_TYPE = "image/png"


def _extract_image_url(item: Any) -> Optional[str]:
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        for key in ("url", "data", "imageUrl", "image"):
            value = item.get(key)
            if isinstance(value, str):
                return value
    return None


def _to_data_url(data: str, mime_type: Optional[str] = None) -> str:
    if data.startswith("data:"):
        return data
    return f"data:{mime_type or DEFAULT_IMAGE_MIME_TYPE};base64,{data}"


def _image_part(url: str) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": url}}


def _inline_data(container: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    inline = container.get("inlineData")
    if isinstance(inline, Mapping) and inline.get("data"):
        return inline
    return None


def detect_images(response: Any) -> list[dict[str, Any]]:
    """Return every image found in ``response`` as ``image_url`` parts.

    Providers put generated images in different places: content parts on the
    assistant message, the message's own ``images`` list, top-level
    ``images``/``image_urls`` lists, Gemini style ``parts`` and ``inlineData``
    blobs. All are scanned in that order. Bare base64 payloads are wrapped
    into ``data:`` URLs.
    """

    if not isinstance(response, Mapping):
        return []
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices:
        return []
    first = choices[0]
    message = first.get("message") if isinstance(first, Mapping) else None
    if not isinstance(message, Mapping):
        return []

    images: list[dict[str, Any]] = []

    content = message.get("content")
    if isinstance(content, list):
        for item in content:
            if not isinstance(item, Mapping):
                continue
            inline = _inline_data(item)
            if item.get("type") == "image_url" and item.get("image_url"):
                image_url = item["image_url"]
                url = _extract_image_url(
                    image_url.get("url") if isinstance(image_url, Mapping) else None
                )
                if url:
                    images.append(_image_part(url))
            elif item.get("type") == "image" and item.get("image"):
                url = _extract_image_url(item["image"])
                if url:
                    images.append(_image_part(url))
            elif inline is not None:
                images.append(
                    _image_part(_to_data_url(str(inline["data"]), inline.get("mimeType")))
                )

    # OpenRouter reports generated images on the message as image_url parts
    message_images = message.get("images")
    if isinstance(message_images, list):
        for entry in message_images:
            nested = entry.get("image_url") if isinstance(entry, Mapping) else None
            url = _extract_image_url(nested if isinstance(nested, Mapping) else entry)
            if url:
                images.append(_image_part(url))

    top_level_images = response.get("images")
    if isinstance(top_level_images, list):
        for entry in top_level_images:
            url = _extract_image_url(entry)
            if url:
                images.append(_image_part(url))

    image_urls = response.get("image_urls")
    if isinstance(image_urls, list):
        for url in image_urls:
            if isinstance(url, str):
                images.append(_image_part(url))

    parts = response.get("parts")
    if isinstance(parts, list):
        for part in parts:
            if not isinstance(part, Mapping):
                continue
            inline = _inline_data(part)
            candidate = (
                inline.get("data") if inline is not None else None
            ) or part.get("imageUrl") or part.get("image")
            data = _extract_image_url(candidate)
            if data:
                images.append(_image_part(_to_data_url(data)))

    inline = _inline_data(message)
    if inline is not None:
        images.append(
            _image_part(_to_data_url(str(inline["data"]), inline.get("mimeType")))
        )

    if images:
        logger.debug("Detected %d image(s) in completion response", len(images))
    return images


__all__ = ["detect_images"]
