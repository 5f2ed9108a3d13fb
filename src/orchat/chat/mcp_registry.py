"""Configuration loading and connection pooling for MCP tool servers."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import shlex
from pathlib import Path
from typing import Annotated, Any, Callable, Iterable, Mapping, Sequence

from mcp.types import CallToolResult
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .mcp_client import MCPToolClient
from .tool_protocol import ToolCall, ToolCallResult, ToolDescriptor

logger = logging.getLogger(__name__)

_ENV_COMMAND_KEY = re.compile(r"^MCP_SERVER_([^_]+)_COMMAND$")


class ToolServerNotFound(LookupError):
    """Raised when a tool call names a server that is not configured."""

    def __init__(self, server_name: str):
        super().__init__(f'Server "{server_name}" not found')
        self.server_name = server_name


class MCPServerConfig(BaseModel):
    """Declarative description of how to launch a stdio MCP server."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[
        str,
        Field(..., min_length=1, description="Identifier used in TOOL_CALL lines"),
    ]
    command: Annotated[str, Field(..., min_length=1, description="Executable to spawn")]
    args: list[str] = Field(
        default_factory=list,
        description="Arguments passed to the executable",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Environment variable overrides for the server",
    )
    cwd: Path | None = Field(
        default=None,
        description="Working directory for the launched process",
    )
    enabled: bool = Field(
        default=True, description="Whether the server should be offered to models"
    )

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("args", mode="before")
    @classmethod
    def _normalize_args(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return shlex.split(value)
        return value


def load_env_server_configs(
    environ: Mapping[str, str] | None = None,
) -> list[MCPServerConfig]:
    """Build server definitions from ``MCP_SERVER_<NAME>_*`` variables.

    ``_COMMAND`` names the executable, ``_ARGS`` holds a JSON array of
    arguments, and every ``_ENV_<KEY>`` becomes an environment override.
    """

    source = os.environ if environ is None else environ
    names = sorted(
        {match.group(1) for key in source if (match := _ENV_COMMAND_KEY.match(key))}
    )

    configs: list[MCPServerConfig] = []
    for name in names:
        command = source.get(f"MCP_SERVER_{name}_COMMAND")
        if not command:
            continue

        args: list[str] = []
        raw_args = source.get(f"MCP_SERVER_{name}_ARGS")
        if raw_args:
            try:
                parsed = json.loads(raw_args)
            except json.JSONDecodeError as exc:
                logger.error("Ignoring invalid args for MCP server %s: %s", name, exc)
            else:
                if isinstance(parsed, list):
                    args = [str(item) for item in parsed]
                else:
                    logger.error(
                        "Ignoring args for MCP server %s: expected a JSON array", name
                    )

        env_prefix = f"MCP_SERVER_{name}_ENV_"
        env = {
            key[len(env_prefix):]: value
            for key, value in source.items()
            if key.startswith(env_prefix) and value
        }
        configs.append(
            MCPServerConfig(name=name, command=command, args=args, env=env)
        )
    return configs


def load_server_configs(
    path: Path | None, *, fallback: Sequence[MCPServerConfig] | None = None
) -> list[MCPServerConfig]:
    """Load server definitions from JSON, letting file entries override ``fallback``."""

    configs_by_name: dict[str, MCPServerConfig] = {}
    for config in fallback or []:
        configs_by_name[config.name] = config

    if path is None or not path.exists():
        return [config for config in configs_by_name.values() if config.enabled]

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in MCP server config {path}: {exc}") from exc

    if isinstance(payload, dict):
        items = payload.get("servers")
        if items is None:
            raise ValueError(f"Expected 'servers' key in MCP server config file {path}")
    elif isinstance(payload, list):
        items = payload
    else:
        raise ValueError(
            f"Unsupported MCP server config format in {path}: expected list or object"
        )
    if not isinstance(items, list):
        raise ValueError(f"Invalid MCP server config in {path}: 'servers' must be a list")

    errors: list[str] = []
    for raw in items:
        try:
            config = MCPServerConfig.model_validate(raw)
        except ValidationError as exc:
            errors.append(str(exc))
            continue
        if config.name in configs_by_name:
            logger.info("Overriding MCP server definition for '%s' from %s", config.name, path)
        configs_by_name[config.name] = config

    if errors:
        message = "\n".join(errors)
        raise ValueError(f"Failed to load MCP server configuration:\n{message}")

    return [config for config in configs_by_name.values() if config.enabled]


ClientFactory = Callable[[MCPServerConfig], MCPToolClient]


def _default_client_factory(config: MCPServerConfig) -> MCPToolClient:
    return MCPToolClient(
        config.command,
        config.args,
        server_id=config.name,
        env=config.env,
        cwd=config.cwd,
    )


class MCPConnectionPool:
    """Own one live client per configured server for the lifetime of the app.

    A per-server lock serializes connection setup so concurrent requests that
    reach a cold server share one process instead of spawning several.
    """

    def __init__(
        self,
        configs: Iterable[MCPServerConfig],
        *,
        client_factory: ClientFactory | None = None,
    ):
        self._configs: dict[str, MCPServerConfig] = {}
        for config in configs:
            self._configs[config.name] = config
        self._client_factory = client_factory or _default_client_factory
        self._clients: dict[str, MCPToolClient] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def server_names(self) -> list[str]:
        return list(self._configs.keys())

    def get_config(self, server_name: str) -> MCPServerConfig:
        config = self._configs.get(server_name.strip().lower())
        if config is None:
            raise ToolServerNotFound(server_name)
        return config

    async def get_client(self, server_name: str) -> MCPToolClient:
        """Return a live client for ``server_name``, connecting on first use.

        A cached client is probed with ``list_tools``; when the probe fails it is
        closed and replaced by a fresh connection.
        """

        config = self.get_config(server_name)
        lock = self._locks.setdefault(config.name, asyncio.Lock())
        async with lock:
            client = self._clients.get(config.name)
            if client is not None:
                try:
                    await client.list_tools()
                    return client
                except Exception as exc:
                    logger.warning(
                        "MCP connection to '%s' is dead, reconnecting: %s",
                        config.name,
                        exc,
                    )
                    self._clients.pop(config.name, None)
                    await client.close()

            client = self._client_factory(config)
            await client.connect()
            self._clients[config.name] = client
            return client

    async def list_server_tools(self, server_name: str) -> list[ToolDescriptor]:
        client = await self.get_client(server_name)
        tools = await client.list_tools()
        config = self.get_config(server_name)
        return [
            ToolDescriptor(
                server_name=config.name,
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema or {},
            )
            for tool in tools
        ]

    async def list_all_tools(self) -> list[ToolDescriptor]:
        """Gather tools from every server, skipping servers that fail."""

        descriptors: list[ToolDescriptor] = []
        for name in self.server_names:
            try:
                descriptors.extend(await self.list_server_tools(name))
            except Exception as exc:
                logger.error("Error getting tools from MCP server '%s': %s", name, exc)
        return descriptors

    async def server_catalog(self) -> list[tuple[str, list[ToolDescriptor]]]:
        """Return each server with its tools; unreachable servers list none."""

        catalog: list[tuple[str, list[ToolDescriptor]]] = []
        for name in self.server_names:
            try:
                tools = await self.list_server_tools(name)
            except Exception as exc:
                logger.error("Error getting tools from MCP server '%s': %s", name, exc)
                tools = []
            catalog.append((name, tools))
        return catalog

    async def call_tool(
        self, server_name: str, tool_name: str, arguments: dict[str, Any] | None = None
    ) -> CallToolResult:
        client = await self.get_client(server_name)
        return await client.call_tool(tool_name, arguments)

    async def execute_tool_calls(self, calls: Sequence[ToolCall]) -> list[ToolCallResult]:
        """Run ``calls`` in order; each failure is reported without stopping the rest."""

        results: list[ToolCallResult] = []
        for call in calls:
            try:
                result = await self.call_tool(call.server_name, call.tool_name, call.arguments)
            except ToolServerNotFound as exc:
                results.append(ToolCallResult(call=call, success=False, error=str(exc)))
                continue
            except Exception as exc:
                logger.warning(
                    "Tool call %s.%s failed: %s", call.server_name, call.tool_name, exc
                )
                results.append(ToolCallResult(call=call, success=False, error=str(exc)))
                continue

            text = MCPToolClient.format_tool_result(result)
            if result.isError:
                results.append(
                    ToolCallResult(call=call, success=False, error=text or "Tool reported an error")
                )
            else:
                results.append(ToolCallResult(call=call, success=True, result=text))
        return results

    async def shutdown(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.close()


__all__ = [
    "MCPConnectionPool",
    "MCPServerConfig",
    "ToolServerNotFound",
    "load_env_server_configs",
    "load_server_configs",
]
