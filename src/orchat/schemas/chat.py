"""Pydantic models for chats, messages, and completion requests."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MessageRole = Literal["user", "assistant", "system"]
_ROLES = ("user", "assistant", "system")


def validate_message_payload(message: Any) -> Optional[str]:
    """Return the first problem with a raw chat message, or ``None`` when valid."""

    if not isinstance(message, dict):
        return "Message must be an object"
    if message.get("role") not in _ROLES:
        return 'Invalid message role. Must be "user", "assistant", or "system"'
    content = message.get("content")
    if not isinstance(content, (str, list)):
        return "Message content must be a string or array"
    if isinstance(content, list):
        for item in content:
            if not isinstance(item, dict) or "type" not in item:
                return "Invalid content array item. Each item must have a type property"
            kind = item.get("type")
            if kind == "text" and not isinstance(item.get("text"), str):
                return "Text content items must have a text property"
            if kind == "image_url":
                image = item.get("image_url")
                if not isinstance(image, dict) or not isinstance(image.get("url"), str):
                    return "Image content items must have an image_url object with url property"
            if kind == "file":
                file_info = item.get("file")
                if not isinstance(file_info, dict) or not isinstance(file_info.get("url"), str):
                    return "File content items must have a file object with url property"
    return None


class ChatMessage(BaseModel):
    """Represents a single chat message."""

    role: MessageRole
    content: Union[str, List[Dict[str, Any]]]

    model_config = ConfigDict(extra="allow")


class CompletionRequest(BaseModel):
    """Incoming completion request payload."""

    messages: List[ChatMessage]
    model: Optional[str] = None
    chat_id: Optional[str] = Field(default=None, alias="chatId")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _validate_messages(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("Request body must be an object")
        messages = data.get("messages")
        if not isinstance(messages, list):
            raise ValueError("Messages array is required")
        for message in messages:
            problem = validate_message_payload(message)
            if problem:
                raise ValueError(problem)
        return data

    def message_dicts(self) -> list[dict[str, Any]]:
        return [message.model_dump(exclude_none=True) for message in self.messages]


class CreateChatRequest(BaseModel):
    title: Optional[str] = None
    model: Optional[str] = None


class UpdateChatRequest(BaseModel):
    title: Any = None

    @field_validator("title")
    @classmethod
    def _validate_title(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Title must be a non-empty string or null")
        return value.strip()


class CreateMessageRequest(BaseModel):
    role: Any = None
    content: Any = None

    @model_validator(mode="after")
    def _validate_fields(self) -> "CreateMessageRequest":
        if self.role not in _ROLES:
            raise ValueError('Invalid role. Must be "user", "assistant", or "system"')
        if not isinstance(self.content, str) or not self.content.strip():
            raise ValueError("Content is required and must be a string")
        return self


class ChatResource(BaseModel):
    """Response payload describing a chat."""

    id: str
    title: Optional[str] = None
    model: str
    createdAt: str = Field(validation_alias="created_at")
    updatedAt: str = Field(validation_alias="updated_at")
    messageCount: Optional[int] = Field(default=None, validation_alias="message_count")


class MessageResource(BaseModel):
    id: str
    chatId: str = Field(validation_alias="chat_id")
    role: MessageRole
    content: Union[str, List[Dict[str, Any]]]
    timestamp: str


class ChatListResponse(BaseModel):
    chats: List[ChatResource]


class ChatResponse(BaseModel):
    chat: ChatResource


class MessageListResponse(BaseModel):
    messages: List[MessageResource]


class MessageResponse(BaseModel):
    message: MessageResource


class DeleteAllResponse(BaseModel):
    success: bool = True
    deletedCount: int


class SuccessResponse(BaseModel):
    success: bool = True


class CompletionResponse(BaseModel):
    message: Dict[str, Any]


__all__ = [
    "ChatListResponse",
    "ChatMessage",
    "ChatResource",
    "ChatResponse",
    "CompletionRequest",
    "CompletionResponse",
    "CreateChatRequest",
    "CreateMessageRequest",
    "DeleteAllResponse",
    "MessageListResponse",
    "MessageResource",
    "MessageResponse",
    "SuccessResponse",
    "UpdateChatRequest",
    "validate_message_payload",
]
