"""Pydantic models for comment threads on assistant messages."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CreateCommentRequest(BaseModel):
    """A comment anchored to ``[startOffset, endOffset)`` of a message's text."""

    model_config = ConfigDict(populate_by_name=True)

    message_id: Any = Field(default=None, alias="messageId")
    selected_text: Any = Field(default=None, alias="selectedText")
    start_offset: Any = Field(default=None, alias="startOffset")
    end_offset: Any = Field(default=None, alias="endOffset")
    user_comment: Any = Field(default=None, alias="userComment")
    is_question: bool = Field(default=False, alias="isQuestion")

    @model_validator(mode="after")
    def _validate_fields(self) -> "CreateCommentRequest":
        required = (self.message_id, self.selected_text, self.user_comment)
        if (
            any(not isinstance(value, str) or not value.strip() for value in required)
            or self.start_offset is None
            or self.end_offset is None
        ):
            raise ValueError(
                "Missing required fields: messageId, selectedText, startOffset, "
                "endOffset, userComment"
            )
        offsets = (self.start_offset, self.end_offset)
        if (
            any(isinstance(value, bool) or not isinstance(value, int) for value in offsets)
            or self.start_offset < 0
            or self.end_offset < self.start_offset
        ):
            raise ValueError("Invalid offset values")
        self.selected_text = self.selected_text.strip()
        self.user_comment = self.user_comment.strip()
        return self


class ReplyToCommentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_reply: Optional[str] = Field(default=None, alias="userReply")


class CommentResource(BaseModel):
    id: str
    messageId: str = Field(validation_alias="message_id")
    userId: str = Field(validation_alias="user_id")
    selectedText: str = Field(validation_alias="selected_text")
    startOffset: int = Field(validation_alias="start_offset")
    endOffset: int = Field(validation_alias="end_offset")
    userComment: str = Field(validation_alias="user_comment")
    aiResponse: Optional[str] = Field(default=None, validation_alias="ai_response")
    createdAt: str = Field(validation_alias="created_at")
    updatedAt: str = Field(validation_alias="updated_at")


class CommentResponse(BaseModel):
    comment: CommentResource


class CommentListResponse(BaseModel):
    comments: List[CommentResource]


__all__ = [
    "CommentListResponse",
    "CommentResource",
    "CommentResponse",
    "CreateCommentRequest",
    "ReplyToCommentRequest",
]
