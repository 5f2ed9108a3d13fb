"""API routes exposing the configured MCP tool servers."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from ..chat.mcp_registry import MCPConnectionPool, ToolServerNotFound
from ..schemas.mcp import ServerListResponse, ToolCallRequest, ToolCallResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mcp", tags=["mcp"])


def get_tool_pool(request: Request) -> MCPConnectionPool:
    pool = getattr(request.app.state, "tool_pool", None)
    if pool is None:
        raise HTTPException(status_code=500, detail="MCP connection pool unavailable")
    return pool


@router.get("/servers", response_model=ServerListResponse)
async def list_servers(pool: MCPConnectionPool = Depends(get_tool_pool)) -> dict[str, Any]:
    catalog = await pool.server_catalog()
    return {
        "servers": [
            {
                "name": name,
                "tools": [
                    {
                        "name": tool.name,
                        "description": tool.description,
                        "inputSchema": tool.input_schema,
                    }
                    for tool in tools
                ],
            }
            for name, tools in catalog
        ]
    }


@router.post("/tools/call", response_model=ToolCallResponse)
async def call_tool(
    payload: ToolCallRequest,
    pool: MCPConnectionPool = Depends(get_tool_pool),
) -> Any:
    try:
        pool.get_config(payload.server_name)
    except ToolServerNotFound as exc:
        raise HTTPException(
            status_code=404, detail=f'MCP server "{payload.server_name}" not found'
        ) from exc

    try:
        result = await pool.call_tool(payload.server_name, payload.tool_name, payload.arguments)
    except Exception as exc:
        logger.error(
            "Error calling tool %s.%s: %s", payload.server_name, payload.tool_name, exc
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "content": [], "error": str(exc)},
        )

    return {
        "success": not result.isError,
        "content": [item.model_dump(mode="json", exclude_none=True) for item in result.content],
        "isError": bool(result.isError),
    }


__all__ = ["get_tool_pool", "router"]
