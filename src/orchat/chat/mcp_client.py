"""Long-lived MCP session with a single stdio tool server."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Sequence

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import CallToolResult, ListToolsResult, TextContent, Tool

logger = logging.getLogger(__name__)

# Spawn plus MCP handshake
CONNECT_TIMEOUT = 30.0
CLOSE_TIMEOUT = 5.0


class MCPToolClient:
    """Own one tool server process and the MCP session running over its pipes.

    The stdio transport is entered and exited inside a dedicated runner task,
    since its anyio cancel scopes must be closed by the task that opened them.
    ``connect`` starts that task and waits until the handshake resolves;
    ``close`` signals it to unwind.
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] | None = None,
        *,
        server_id: str | None = None,
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
    ):
        if not command:
            raise ValueError("Command must not be empty")
        self._command = command
        self._args = list(args or [])
        self._server_id = server_id or command
        self._env = dict(env or {})
        self._cwd = cwd
        self._session: ClientSession | None = None
        self._runner: asyncio.Task | None = None
        self._stop: asyncio.Event | None = None
        self._guard = asyncio.Lock()

    def _launch_parameters(self) -> StdioServerParameters:
        env = {**os.environ, **self._env}
        env.setdefault("PYTHONUNBUFFERED", "1")
        return StdioServerParameters(
            command=self._command,
            args=self._args,
            env=env,
            cwd=str(self._cwd) if self._cwd is not None else None,
        )

    async def _serve(self, ready: asyncio.Future, stop: asyncio.Event) -> None:
        try:
            async with stdio_client(self._launch_parameters()) as (reader, writer):
                async with ClientSession(reader, writer) as session:
                    await session.initialize()
                    if ready.done():
                        return
                    ready.set_result(session)
                    await stop.wait()
        except Exception as exc:
            if ready.done():
                logger.warning("MCP server '%s' exited: %s", self._server_id, exc)
            else:
                ready.set_exception(exc)
        finally:
            self._session = None
            if not ready.done():
                ready.set_exception(
                    ConnectionError("server exited before completing the handshake")
                )

    async def connect(self) -> None:
        """Spawn the server and complete the MCP handshake.

        Raises ``ConnectionError`` when the process cannot be started, the
        handshake fails, or it does not finish within ``CONNECT_TIMEOUT``.
        """

        async with self._guard:
            if self._session is not None:
                return

            ready: asyncio.Future = asyncio.get_running_loop().create_future()
            self._stop = asyncio.Event()
            logger.info(
                "Launching MCP server '%s': %s",
                self._server_id,
                " ".join([self._command, *self._args]),
            )
            self._runner = asyncio.create_task(
                self._serve(ready, self._stop), name=f"mcp-{self._server_id}"
            )

            try:
                session = await asyncio.wait_for(ready, timeout=CONNECT_TIMEOUT)
            except asyncio.TimeoutError as exc:
                await self._stop_runner()
                raise ConnectionError(
                    f"Timed out connecting to MCP server '{self._server_id}'"
                ) from exc
            except Exception as exc:
                await self._stop_runner()
                raise ConnectionError(
                    f"Failed to connect to MCP server '{self._server_id}': {exc}"
                ) from exc

            self._session = session
            logger.info("Connected to MCP server '%s'", self._server_id)

    async def _stop_runner(self) -> None:
        runner, stop = self._runner, self._stop
        self._runner = None
        self._stop = None
        self._session = None
        if runner is None:
            return

        if stop is not None:
            stop.set()
        try:
            await asyncio.wait_for(runner, timeout=CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(
                "MCP server '%s' did not stop within %.0fs; cancelled",
                self._server_id,
                CLOSE_TIMEOUT,
            )
        except Exception as exc:
            logger.warning("Error stopping MCP server '%s': %s", self._server_id, exc)

    async def close(self) -> None:
        """Stop the session and terminate the server process."""

        async with self._guard:
            if self._runner is not None:
                logger.info("Closing MCP session for server '%s'", self._server_id)
            await self._stop_runner()

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"MCP server '{self._server_id}' is not connected")
        return self._session

    async def list_tools(self) -> list[Tool]:
        """Return every tool the server offers, walking all result pages."""

        session = self._require_session()
        collected: list[Tool] = []
        cursor: str | None = None
        while True:
            page: ListToolsResult = await session.list_tools(cursor=cursor)
            collected.extend(page.tools)
            cursor = page.nextCursor
            if not cursor:
                break
        return collected

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> CallToolResult:
        session = self._require_session()
        logger.debug("Calling %s.%s with %s", self._server_id, name, arguments)
        return await session.call_tool(name, arguments or {})

    @staticmethod
    def format_tool_result(result: CallToolResult) -> str:
        """Flatten a tool result to text.

        Text items are used as-is and other items (images, resources) are
        serialized to JSON, one per line. A result with no content falls back
        to its structured payload.
        """

        lines = [
            item.text
            if isinstance(item, TextContent)
            else json.dumps(item.model_dump(mode="json", exclude_none=True))
            for item in result.content
        ]
        if not lines and result.structuredContent:
            lines.append(json.dumps(result.structuredContent))
        return "\n".join(lines)


__all__ = ["CLOSE_TIMEOUT", "CONNECT_TIMEOUT", "MCPToolClient"]
