"""Comment threads anchored to spans of chat messages."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..chat import CompletionOrchestrator
from ..openrouter import OpenRouterError
from ..repository import ChatRepository
from ..schemas.comments import (
    CommentListResponse,
    CommentResponse,
    CreateCommentRequest,
    ReplyToCommentRequest,
)
from ..services.auth import get_current_user, get_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/comments", tags=["comments"])


def get_orchestrator(request: Request) -> CompletionOrchestrator:
    orchestrator = getattr(request.app.state, "chat_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Chat orchestrator unavailable")
    return orchestrator


@router.get("", response_model=CommentListResponse)
async def list_comments(
    message_id: Optional[str] = Query(default=None, alias="messageId"),
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any]:
    if not message_id:
        raise HTTPException(status_code=400, detail="messageId parameter is required")
    message = await repository.get_message_for_user(message_id, user["id"])
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return {"comments": await repository.list_comments(message["id"])}


@router.post("", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def create_comment(
    payload: CreateCommentRequest,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    message = await repository.get_message_for_user(payload.message_id, user["id"])
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")

    comment = await repository.create_comment(
        message_id=message["id"],
        user_id=user["id"],
        selected_text=payload.selected_text,
        start_offset=payload.start_offset,
        end_offset=payload.end_offset,
        user_comment=payload.user_comment,
    )

    if payload.is_question:
        thread = {**comment, "chat_id": message["chat_id"], "chat_model": message["chat_model"]}
        try:
            answered = await orchestrator.answer_comment(thread)
        except OpenRouterError as exc:
            logger.error("Error generating AI response for comment %s: %s", comment["id"], exc)
        except Exception:
            logger.exception("Error storing AI response for comment %s", comment["id"])
        else:
            if answered is not None:
                comment = answered

    return {"comment": comment}


@router.post("/{comment_id}/reply", response_model=CommentResponse)
async def reply_to_comment(
    comment_id: str,
    payload: ReplyToCommentRequest,
    user: dict[str, Any] = Depends(get_current_user),
    repository: ChatRepository = Depends(get_repository),
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    comment = await repository.get_comment_for_user(comment_id, user["id"])
    if comment is None:
        raise HTTPException(status_code=404, detail="Comment not found")

    updated = await orchestrator.answer_comment(comment, user_reply=payload.user_reply)
    if updated is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    return {"comment": updated}


__all__ = ["get_orchestrator", "router"]
