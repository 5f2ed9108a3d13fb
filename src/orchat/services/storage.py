"""Local disk storage for uploaded files."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from fastapi import UploadFile

from ..utils.filenames import build_storage_name, file_extension, is_safe_filename

logger = logging.getLogger(__name__)

CONTENT_TYPES: dict[str, str] = {
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
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_DEVELOPMENT_HOST_MARKERS = ("localhost", "127.0.0.1", "yourdomain.com")


class StorageError(RuntimeError):
    """Base error raised for file storage failures."""


class FileTooLarge(StorageError):
    """Raised when an uploaded file exceeds the configured limit."""


class UnsupportedFileType(StorageError):
    """Raised when an upload's content type is not on the allow list."""


class InvalidFilename(StorageError):
    """Raised when a requested name could escape the storage directory."""


class StoredFileNotFound(StorageError):
    """Raised when a requested file does not exist."""


@dataclass(frozen=True)
class StoredFile:
    url: str
    filename: str
    path: Path
    mime_type: str


@dataclass(frozen=True)
class StorageStats:
    total_files: int
    total_size: int
    oldest_file: datetime | None
    newest_file: datetime | None


def content_type_for(filename: str) -> str:
    return CONTENT_TYPES.get(file_extension(filename).lower(), DEFAULT_CONTENT_TYPE)


def file_created_at(stat_result: os.stat_result) -> datetime:
    """Return the creation time, using birth time when the platform records it."""

    created = getattr(stat_result, "st_birthtime", None)
    if created is None:
        created = stat_result.st_ctime
    return datetime.fromtimestamp(created, tz=timezone.utc)


def _format_megabytes(value: float) -> str:
    return f"{value:g}"


class LocalFileStore:
    """Persist uploads under a directory and build URLs the gateway can fetch."""

    def __init__(
        self,
        root: Path,
        *,
        public_url: str,
        max_size_bytes: int,
        allowed_types: Iterable[str],
    ) -> None:
        self._root = root
        self._public_url = public_url.rstrip("/")
        self._max_size_bytes = max_size_bytes
        self._allowed_types = [item for item in allowed_types if item]

    @property
    def root(self) -> Path:
        return self._root

    @property
    def allowed_types(self) -> list[str]:
        return list(self._allowed_types)

    @property
    def inline_images(self) -> bool:
        """True when the public URL is not reachable by the gateway."""

        return any(marker in self._public_url for marker in _DEVELOPMENT_HOST_MARKERS)

    def ensure_root(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)

    def check_type(self, mime_type: str) -> None:
        if "*" in self._allowed_types or mime_type in self._allowed_types:
            return
        raise UnsupportedFileType(
            f"File type not allowed. Allowed types: {', '.join(self._allowed_types)}"
        )

    def _too_large(self) -> FileTooLarge:
        megabytes = self._max_size_bytes / (1024 * 1024)
        return FileTooLarge(
            f"File too large. Maximum size is {_format_megabytes(megabytes)}MB"
        )

    async def save_upload(self, upload: UploadFile) -> StoredFile:
        """Validate, persist, and describe an uploaded file."""

        if upload.size is not None and upload.size > self._max_size_bytes:
            await upload.close()
            raise self._too_large()
        mime_type = upload.content_type or DEFAULT_CONTENT_TYPE
        self.check_type(mime_type)
        data = await self._read_upload(upload)
        return await self.save_bytes(data, filename=upload.filename, mime_type=mime_type)

    async def save_bytes(
        self, data: bytes, *, filename: str | None, mime_type: str
    ) -> StoredFile:
        if len(data) > self._max_size_bytes:
            raise self._too_large()

        self.ensure_root()
        stored_name = build_storage_name(filename)
        path = self._root / stored_name
        await asyncio.to_thread(path.write_bytes, data)

        if self.inline_images and mime_type.startswith("image/"):
            encoded = base64.b64encode(data).decode("ascii")
            url = f"data:{mime_type};base64,{encoded}"
        else:
            url = f"{self._public_url}/api/files/{stored_name}"

        logger.info("Stored upload %s (%s, %d bytes)", stored_name, mime_type, len(data))
        return StoredFile(url=url, filename=stored_name, path=path, mime_type=mime_type)

    def resolve(self, filename: str) -> Path:
        """Return the on-disk path for ``filename`` after validating the name."""

        if not is_safe_filename(filename):
            raise InvalidFilename("Invalid filename")
        path = self._root / filename
        if not path.is_file():
            raise StoredFileNotFound("File not found")
        return path

    async def read(self, filename: str) -> bytes:
        path = self.resolve(filename)
        return await asyncio.to_thread(path.read_bytes)

    def stats(self) -> StorageStats:
        self.ensure_root()
        total_files = 0
        total_size = 0
        oldest: datetime | None = None
        newest: datetime | None = None
        for entry in self._root.iterdir():
            if not entry.is_file():
                continue
            total_files += 1
            try:
                info = entry.stat()
            except OSError:
                continue
            total_size += info.st_size
            created = file_created_at(info)
            if oldest is None or created < oldest:
                oldest = created
            if newest is None or created > newest:
                newest = created
        return StorageStats(
            total_files=total_files,
            total_size=total_size,
            oldest_file=oldest,
            newest_file=newest,
        )

    async def _read_upload(self, upload: UploadFile) -> bytes:
        chunk_size = 1024 * 1024  # 1 MiB
        size = 0
        chunks: list[bytes] = []
        try:
            while True:
                chunk = await upload.read(chunk_size)
                if not chunk:
                    break
                size += len(chunk)
                if size > self._max_size_bytes:
                    raise self._too_large()
                chunks.append(chunk)
        finally:
            await upload.close()
        return b"".join(chunks)


__all__ = [
    "CONTENT_TYPES",
    "FileTooLarge",
    "InvalidFilename",
    "LocalFileStore",
    "StorageError",
    "StorageStats",
    "StoredFile",
    "StoredFileNotFound",
    "UnsupportedFileType",
    "content_type_for",
    "file_created_at",
]
