"""Small stdio MCP server with deterministic tools for local runs and tests."""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

mcp = FastMCP("echo-toolkit")


@mcp.tool("echo")
async def echo(message: str, uppercase: bool = False) -> str:
    """Return the message, optionally uppercased."""

    return message.upper() if uppercase else message


@mcp.tool("add")
async def add(a: float, b: float) -> dict[str, Any]:
    """Add two numbers and report the sum."""

    return {"a": a, "b": b, "sum": a + b}


@mcp.tool("fail")
async def fail(reason: str = "requested failure") -> str:
    """Always raise, so callers can exercise tool error reporting."""

    raise RuntimeError(reason)


def run() -> None:  # pragma: no cover - integration entrypoint
    mcp.run()


if __name__ == "__main__":  # pragma: no cover - script execution
    run()

__all__ = ["add", "echo", "fail", "mcp", "run"]
