from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from orchat.services.storage import (
    FileTooLarge,
    InvalidFilename,
    LocalFileStore,
    StoredFileNotFound,
    UnsupportedFileType,
    content_type_for,
)
from orchat.services.storage_cleanup import cleanup_expired_files

MEGABYTE = 1024 * 1024


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_store(tmp_path, public_url: str = "https://chat.example.com", **kwargs) -> LocalFileStore:
    options = {
        "max_size_bytes": MEGABYTE,
        "allowed_types": ["image/png", "text/plain"],
    }
    options.update(kwargs)
    return LocalFileStore(tmp_path / "uploads", public_url=public_url, **options)


def make_upload(data: bytes, filename: str, content_type: str) -> UploadFile:
    return UploadFile(
        file=io.BytesIO(data),
        filename=filename,
        size=len(data),
        headers=Headers({"content-type": content_type}),
    )


def test_content_type_table():
    assert content_type_for("a.PNG") == "image/png"
    assert content_type_for("notes.md") == "text/markdown"
    assert content_type_for("archive.zip") == "application/octet-stream"


@pytest.mark.anyio
async def test_save_upload_public_url(tmp_path):
    store = make_store(tmp_path)

    stored = await store.save_upload(make_upload(b"hello", "my notes.txt", "text/plain"))

    assert stored.filename.startswith("my_notes_")
    assert stored.filename.endswith(".txt")
    assert stored.url == f"https://chat.example.com/api/files/{stored.filename}"
    assert await store.read(stored.filename) == b"hello"


@pytest.mark.anyio
async def test_images_are_inlined_for_local_hosts(tmp_path):
    store = make_store(tmp_path, public_url="http://localhost:3000")

    stored = await store.save_upload(make_upload(b"\x89PNG", "pic.png", "image/png"))

    assert stored.url == "data:image/png;base64,iVBORw=="
    assert stored.path.exists()


@pytest.mark.anyio
async def test_oversized_upload_rejected(tmp_path):
    store = make_store(tmp_path)
    data = b"x" * (2 * MEGABYTE)

    with pytest.raises(FileTooLarge, match="Maximum size is 1MB"):
        await store.save_upload(make_upload(data, "big.png", "image/png"))


@pytest.mark.anyio
async def test_disallowed_type_rejected(tmp_path):
    store = make_store(tmp_path)

    with pytest.raises(UnsupportedFileType, match="image/png, text/plain"):
        await store.save_upload(make_upload(b"%PDF", "doc.pdf", "application/pdf"))


@pytest.mark.anyio
async def test_wildcard_allows_any_type(tmp_path):
    store = make_store(tmp_path, allowed_types=["*"])
    stored = await store.save_upload(make_upload(b"PK", "a.zip", "application/zip"))
    assert (store.root / stored.filename).is_file()


@pytest.mark.anyio
@pytest.mark.parametrize("name", ["../../etc/passwd", "a/b.png", "a\\b.png"])
async def test_unsafe_names_rejected_before_filesystem(tmp_path, name):
    store = make_store(tmp_path)
    with pytest.raises(InvalidFilename):
        await store.read(name)
    assert not (tmp_path / "uploads").exists()


@pytest.mark.anyio
async def test_missing_file(tmp_path):
    store = make_store(tmp_path)
    store.ensure_root()
    with pytest.raises(StoredFileNotFound):
        await store.read("nope.png")


@pytest.mark.anyio
async def test_cleanup_removes_only_expired_files(tmp_path):
    store = make_store(tmp_path)
    first = await store.save_bytes(b"a", filename="a.txt", mime_type="text/plain")
    await store.save_bytes(b"bb", filename="b.txt", mime_type="text/plain")

    assert cleanup_expired_files(store, retention=timedelta(hours=24)) == 0
    stats = store.stats()
    assert stats.total_files == 2
    assert stats.total_size == 3
    assert stats.oldest_file is not None and stats.oldest_file <= stats.newest_file

    later = datetime.now(timezone.utc) + timedelta(hours=25)
    assert cleanup_expired_files(store, retention=timedelta(hours=24), now=later) == 2
    assert not (store.root / first.filename).exists()
    assert store.stats().total_files == 0


@pytest.mark.anyio
async def test_stats_ignore_subdirectories(tmp_path):
    store = make_store(tmp_path)
    await store.save_bytes(b"abc", filename="a.txt", mime_type="text/plain")
    (store.root / "thumbnails").mkdir()

    stats = store.stats()
    assert stats.total_files == 1
    assert stats.total_size == 3
