"""Saved prompt routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from ..repository import ChatRepository
from ..schemas.chat import DeleteAllResponse, SuccessResponse
from ..schemas.prompts import (
    CreatePromptRequest,
    PromptListResponse,
    PromptResponse,
    UpdatePromptRequest,
)
from ..services.auth import get_current_user, get_repository

router = APIRouter(prefix="/api/prompts", tags=["prompts"])


@router.get("", response_model=PromptListResponse)
async def list_prompts(
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    return {"prompts": await repository.list_prompts(user["id"])}


@router.post("", response_model=PromptResponse, status_code=status.HTTP_201_CREATED)
async def create_prompt(
    payload: CreatePromptRequest,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    prompt = await repository.create_prompt(user["id"], payload.title, payload.content)
    return {"prompt": prompt}


@router.delete("", response_model=DeleteAllResponse)
async def delete_all_prompts(
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    deleted = await repository.delete_all_prompts(user["id"])
    return {"success": True, "deletedCount": deleted}


@router.patch("/{prompt_id}", response_model=PromptResponse)
async def update_prompt(
    prompt_id: str,
    payload: UpdatePromptRequest,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    prompt = await repository.update_prompt(
        prompt_id, user["id"], title=payload.title, content=payload.content
    )
    if prompt is None:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return {"prompt": prompt}


@router.delete("/{prompt_id}", response_model=SuccessResponse)
async def delete_prompt(
    prompt_id: str,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    if not await repository.delete_prompt(prompt_id, user["id"]):
        raise HTTPException(status_code=404, detail="Prompt not found")
    return {"success": True}


__all__ = ["router"]
