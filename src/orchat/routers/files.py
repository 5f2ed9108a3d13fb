"""Routes for uploading, serving, and sweeping locally stored files."""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.responses import Response

from ..config import Settings, get_settings
from ..services.auth import get_current_user, get_optional_user
from ..services.storage import (
    InvalidFilename,
    LocalFileStore,
    StorageError,
    StorageStats,
    StoredFileNotFound,
    content_type_for,
)
from ..services.storage_cleanup import cleanup_expired_files

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["files"])

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def get_file_store(request: Request) -> LocalFileStore:
    store = getattr(request.app.state, "file_store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="File storage unavailable")
    return store


def _serialize_stats(stats: StorageStats) -> dict[str, Any]:
    return {
        "totalFiles": stats.total_files,
        "totalSize": stats.total_size,
        "oldestFile": stats.oldest_file.isoformat() if stats.oldest_file else None,
        "newestFile": stats.newest_file.isoformat() if stats.newest_file else None,
    }


@router.post("/upload")
async def upload_file(
    file: Optional[UploadFile] = File(default=None),
    user: dict[str, Any] = Depends(get_current_user),
    store: LocalFileStore = Depends(get_file_store),
) -> dict[str, str]:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    try:
        stored = await store.save_upload(file)
    except StorageError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("User %s uploaded %s", user["id"], stored.filename)
    return {"url": stored.url, "filename": stored.filename}


@router.get("/files/{filename:path}")
async def serve_file(
    filename: str,
    store: LocalFileStore = Depends(get_file_store),
) -> Response:
    try:
        data = await store.read(filename)
    except InvalidFilename as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoredFileNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    headers = {
        **_CORS_HEADERS,
        "Cache-Control": "public, max-age=3600",
        "Content-Disposition": f'inline; filename="{filename}"',
    }
    return Response(content=data, media_type=content_type_for(filename), headers=headers)


@router.options("/files/{filename:path}")
async def file_preflight(filename: str) -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=_CORS_HEADERS)


def _authorize_cleanup(
    request: Request,
    settings: Settings,
    user: Optional[dict[str, Any]],
) -> None:
    secret = settings.cleanup_secret_token
    if secret:
        authorization = request.headers.get("authorization") or ""
        expected = f"Bearer {secret.get_secret_value()}"
        if not secrets.compare_digest(authorization, expected):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
        return
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/cleanup")
async def run_cleanup(
    request: Request,
    settings: Settings = Depends(get_settings),
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    store: LocalFileStore = Depends(get_file_store),
) -> dict[str, Any]:
    _authorize_cleanup(request, settings, user)
    deleted = await asyncio.to_thread(
        cleanup_expired_files, store, retention=settings.file_retention
    )
    return {
        "success": True,
        "deletedCount": deleted,
        "stats": _serialize_stats(store.stats()),
    }


@router.get("/cleanup")
async def cleanup_status(
    settings: Settings = Depends(get_settings),
    user: dict[str, Any] = Depends(get_current_user),
    store: LocalFileStore = Depends(get_file_store),
) -> dict[str, Any]:
    return {
        "stats": _serialize_stats(store.stats()),
        "retentionHours": settings.file_retention_hours,
    }


__all__ = ["get_file_store", "router"]
