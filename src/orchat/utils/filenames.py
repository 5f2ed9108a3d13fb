"""Filename normalization utilities for local file storage."""

from __future__ import annotations

import re
import secrets
import time
from pathlib import PurePath

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


def sanitize_stem(name: str | None) -> str:
    """Return the filename stem with every unsafe character replaced by ``_``.

    Parameters
    ----------
    name:
        Original filename as supplied by the client (may be None or empty).

    Returns
    -------
    str
        The stem with anything outside ``[a-zA-Z0-9-_]`` mapped to an underscore.
        Falls back to ``"file"`` when nothing usable remains.
    """

    if not name:
        return "file"
    stem = PurePath(name).stem
    if not stem:
        return "file"
    return _UNSAFE_CHARS.sub("_", stem)


def file_extension(name: str | None) -> str:
    """Return the extension after the last dot, without the dot."""

    if not name or "." not in name:
        return ""
    return name.rsplit(".", 1)[-1]


def build_storage_name(original_filename: str | None) -> str:
    """Construct a unique stored filename ``<stem>_<epoch-ms>_<random>.<ext>``."""

    stem = sanitize_stem(original_filename)
    timestamp = int(time.time() * 1000)
    suffix = secrets.token_hex(4)
    ext = _UNSAFE_CHARS.sub("", file_extension(original_filename))
    if ext:
        return f"{stem}_{timestamp}_{suffix}.{ext}"
    return f"{stem}_{timestamp}_{suffix}"


def is_safe_filename(filename: str) -> bool:
    """Return False for names that could escape the storage directory."""

    return bool(filename) and not any(token in filename for token in ("..", "/", "\\"))


__all__ = ["build_storage_name", "file_extension", "is_safe_filename", "sanitize_stem"]
