"""Pydantic models for the MCP tool server endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ToolResource(BaseModel):
    name: str
    description: str = ""
    inputSchema: Dict[str, Any] = Field(default_factory=dict)


class ServerResource(BaseModel):
    name: str
    tools: List[ToolResource]


class ServerListResponse(BaseModel):
    servers: List[ServerResource]


class ToolCallRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    server_name: Any = Field(default=None, alias="serverName")
    tool_name: Any = Field(default=None, alias="toolName")
    arguments: Any = None

    @model_validator(mode="after")
    def _validate_fields(self) -> "ToolCallRequest":
        names = (self.server_name, self.tool_name)
        if any(not isinstance(value, str) or not value.strip() for value in names):
            raise ValueError("serverName and toolName are required")
        if self.arguments is None:
            self.arguments = {}
        if not isinstance(self.arguments, dict):
            raise ValueError("arguments must be an object")
        return self


class ToolCallResponse(BaseModel):
    success: bool
    content: List[Dict[str, Any]] = Field(default_factory=list)
    isError: bool = False
    error: Optional[str] = None


__all__ = [
    "ServerListResponse",
    "ServerResource",
    "ToolCallRequest",
    "ToolCallResponse",
    "ToolResource",
]
