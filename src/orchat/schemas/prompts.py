"""Pydantic models for saved prompts."""

from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, Field, model_validator


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


class CreatePromptRequest(BaseModel):
    title: Any = None
    content: Any = None

    @model_validator(mode="after")
    def _validate_fields(self) -> "CreatePromptRequest":
        if _is_blank(self.title):
            raise ValueError("Title is required and must be a non-empty string")
        if _is_blank(self.content):
            raise ValueError("Content is required and must be a non-empty string")
        self.title = self.title.strip()
        self.content = self.content.strip()
        return self


class UpdatePromptRequest(BaseModel):
    title: Any = None
    content: Any = None

    @model_validator(mode="after")
    def _validate_fields(self) -> "UpdatePromptRequest":
        if self.title is not None:
            if _is_blank(self.title):
                raise ValueError("Title must be a non-empty string")
            self.title = self.title.strip()
        if self.content is not None:
            if _is_blank(self.content):
                raise ValueError("Content must be a non-empty string")
            self.content = self.content.strip()
        if self.title is None and self.content is None:
            raise ValueError("At least one field (title or content) must be provided")
        return self


class PromptResource(BaseModel):
    id: str
    title: str
    content: str
    createdAt: str = Field(validation_alias="created_at")
    updatedAt: str = Field(validation_alias="updated_at")


class PromptResponse(BaseModel):
    prompt: PromptResource


class PromptListResponse(BaseModel):
    prompts: List[PromptResource]


__all__ = [
    "CreatePromptRequest",
    "PromptListResponse",
    "PromptResource",
    "PromptResponse",
    "UpdatePromptRequest",
]
