"""Chat and message management routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from ..chat.content import derive_title
from ..config import Settings, get_settings
from ..repository import ChatRepository
from ..schemas.chat import (
    ChatListResponse,
    ChatResponse,
    CreateChatRequest,
    CreateMessageRequest,
    DeleteAllResponse,
    MessageListResponse,
    MessageResponse,
    SuccessResponse,
    UpdateChatRequest,
)
from ..services.auth import get_current_user, get_repository

router = APIRouter(prefix="/api/chats", tags=["chats"])


async def _require_chat(
    repository: ChatRepository, chat_id: str, user: dict[str, Any]
) -> dict[str, Any]:
    chat = await repository.get_chat(chat_id, user["id"])
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


@router.get("", response_model=ChatListResponse)
async def list_chats(
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    return {"chats": await repository.list_chats(user["id"])}


@router.post("", response_model=ChatResponse, status_code=status.HTTP_201_CREATED)
async def create_chat(
    payload: CreateChatRequest,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    title = payload.title.strip() if payload.title and payload.title.strip() else None
    model = payload.model or settings.default_chat_model
    chat = await repository.create_chat(user["id"], title, model)
    return {"chat": chat}


@router.delete("", response_model=DeleteAllResponse)
async def delete_all_chats(
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    deleted = await repository.delete_all_chats(user["id"])
    return {"success": True, "deletedCount": deleted}


@router.patch("/{chat_id}", response_model=ChatResponse)
async def rename_chat(
    chat_id: str,
    payload: UpdateChatRequest,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    chat = await repository.update_chat_title(chat_id, user["id"], payload.title)
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return {"chat": chat}


@router.delete("/{chat_id}", response_model=SuccessResponse)
async def delete_chat(
    chat_id: str,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    if not await repository.delete_chat(chat_id, user["id"]):
        raise HTTPException(status_code=404, detail="Chat not found")
    return {"success": True}


@router.get("/{chat_id}/messages", response_model=MessageListResponse)
async def list_messages(
    chat_id: str,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    chat = await _require_chat(repository, chat_id, user)
    return {"messages": await repository.list_messages(chat["id"])}


@router.post(
    "/{chat_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_message(
    chat_id: str,
    payload: CreateMessageRequest,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    chat = await _require_chat(repository, chat_id, user)
    message = await repository.add_message(chat["id"], payload.role, payload.content)
    if not chat.get("title") and payload.role == "user":
        title = derive_title(payload.content)
        if title:
            await repository.update_chat_title(chat["id"], user["id"], title)
    return {"message": message}


__all__ = ["router"]
