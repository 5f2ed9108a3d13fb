"""Tests for MCP server configuration loading and the connection pool."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from mcp.types import CallToolResult, TextContent, Tool

from orchat.chat.mcp_registry import (
    MCPConnectionPool,
    MCPServerConfig,
    ToolServerNotFound,
    load_env_server_configs,
    load_server_configs,
)
from orchat.chat.tool_protocol import ToolCall

pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeClient:
    def __init__(self, config: MCPServerConfig, tools: list[Tool]):
        self.config = config
        self._tools = tools
        self.connect_calls = 0
        self.closed = False
        self.dead = False
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def connect(self) -> None:
        self.connect_calls += 1
        # Yield so concurrent callers interleave here
        await asyncio.sleep(0.01)

    async def close(self) -> None:
        self.closed = True

    async def list_tools(self) -> list[Tool]:
        if self.dead:
            raise ConnectionError("pipe closed")
        return list(self._tools)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        self.calls.append((name, arguments or {}))
        if name == "explode":
            raise RuntimeError("tool crashed")
        if name == "refuse":
            return CallToolResult(
                content=[TextContent(type="text", text="not allowed")], isError=True
            )
        return CallToolResult(content=[TextContent(type="text", text=f"ran {name}")])


def _tool(name: str) -> Tool:
    return Tool(
        name=name,
        description=f"{name} tool",
        inputSchema={"type": "object", "properties": {"value": {"type": "string"}}},
    )


def make_pool(*names: str, broken: tuple[str, ...] = ()):
    created: list[FakeClient] = []

    def factory(config: MCPServerConfig) -> FakeClient:
        if config.name in broken:
            raise ConnectionError(f"cannot start {config.name}")
        client = FakeClient(config, [_tool(f"{config.name}_tool")])
        created.append(client)
        return client

    configs = [MCPServerConfig(name=name, command="python") for name in names]
    return MCPConnectionPool(configs, client_factory=factory), created


def test_env_configs_parsed():
    environ = {
        "MCP_SERVER_FILES_COMMAND": "npx",
        "MCP_SERVER_FILES_ARGS": '["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]',
        "MCP_SERVER_FILES_ENV_ROOT": "/tmp",
        "MCP_SERVER_GIT_COMMAND": "uvx",
        "UNRELATED": "1",
    }
    configs = {config.name: config for config in load_env_server_configs(environ)}

    assert set(configs) == {"files", "git"}
    assert configs["files"].args == ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]
    assert configs["files"].env == {"ROOT": "/tmp"}
    assert configs["git"].args == []


def test_env_configs_with_invalid_args_keep_server():
    environ = {"MCP_SERVER_BAD_COMMAND": "tool", "MCP_SERVER_BAD_ARGS": "not json"}
    (config,) = load_env_server_configs(environ)
    assert config.name == "bad"
    assert config.args == []


def test_file_configs_override_fallback(tmp_path):
    path = tmp_path / "servers.json"
    path.write_text(
        json.dumps(
            {
                "servers": [
                    {"name": "files", "command": "node", "args": "server.js --root /srv"},
                    {"name": "off", "command": "x", "enabled": False},
                ]
            }
        ),
        encoding="utf-8",
    )
    fallback = [MCPServerConfig(name="files", command="npx"), MCPServerConfig(name="git", command="uvx")]

    configs = {config.name: config for config in load_server_configs(path, fallback=fallback)}

    assert set(configs) == {"files", "git"}
    assert configs["files"].command == "node"
    assert configs["files"].args == ["server.js", "--root", "/srv"]


def test_missing_file_uses_fallback(tmp_path):
    fallback = [MCPServerConfig(name="git", command="uvx")]
    assert load_server_configs(tmp_path / "missing.json", fallback=fallback) == fallback
    assert load_server_configs(None) == []


def test_invalid_file_raises(tmp_path):
    path = tmp_path / "servers.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        load_server_configs(path)


async def test_unknown_server_raises():
    pool, _ = make_pool("files")
    with pytest.raises(ToolServerNotFound, match='Server "nope" not found'):
        await pool.get_client("nope")


async def test_concurrent_first_use_spawns_one_client():
    pool, created = make_pool("files")

    clients = await asyncio.gather(*(pool.get_client("files") for _ in range(5)))

    assert len(created) == 1
    assert all(client is created[0] for client in clients)
    assert created[0].connect_calls == 1


async def test_dead_client_is_replaced():
    pool, created = make_pool("files")
    first = await pool.get_client("files")
    first.dead = True

    second = await pool.get_client("files")

    assert second is not first
    assert first.closed
    assert len(created) == 2


async def test_lookup_is_case_insensitive():
    pool, created = make_pool("files")
    assert await pool.get_client("FILES") is await pool.get_client("files")
    assert len(created) == 1


async def test_list_all_tools_skips_failing_servers():
    pool, _ = make_pool("files", "broken", broken=("broken",))

    tools = await pool.list_all_tools()

    assert [(tool.server_name, tool.name) for tool in tools] == [("files", "files_tool")]
    assert tools[0].parameter_names == ["value"]


async def test_server_catalog_lists_failing_server_without_tools():
    pool, _ = make_pool("files", "broken", broken=("broken",))

    catalog = dict(await pool.server_catalog())

    assert [tool.name for tool in catalog["files"]] == ["files_tool"]
    assert catalog["broken"] == []


async def test_execute_tool_calls_isolates_failures():
    pool, created = make_pool("files")
    calls = [
        ToolCall("files", "read", {"value": "a"}),
        ToolCall("files", "explode", {}),
        ToolCall("ghost", "read", {}),
        ToolCall("files", "refuse", {}),
        ToolCall("files", "list", {}),
    ]

    results = await pool.execute_tool_calls(calls)

    assert [result.success for result in results] == [True, False, False, False, True]
    assert results[0].result == "ran read"
    assert results[1].error == "tool crashed"
    assert results[2].error == 'Server "ghost" not found'
    assert results[3].error == "not allowed"
    assert created[0].calls[0] == ("read", {"value": "a"})


async def test_shutdown_closes_clients():
    pool, created = make_pool("files", "git")
    await pool.get_client("files")
    await pool.get_client("git")

    await pool.shutdown()

    assert all(client.closed for client in created)
