"""Tests for the completion pipeline with a fake gateway and fake tool servers."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp.types import CallToolResult, TextContent, Tool

from orchat.chat import CompletionOrchestrator
from orchat.chat.mcp_registry import MCPConnectionPool, MCPServerConfig
from orchat.config import Settings
from orchat.openrouter import OpenRouterError
from orchat.repository import ChatRepository

pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _reply(content: Any) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class FilesClient:
    def __init__(self, config: MCPServerConfig):
        self.config = config
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def list_tools(self) -> list[Tool]:
        return [
            Tool(
                name="read",
                description="Read a file",
                inputSchema={"type": "object", "properties": {"path": {"type": "string"}}},
            )
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        self.calls.append((name, arguments or {}))
        return CallToolResult(
            content=[TextContent(type="text", text=f"contents of {arguments['path']}")]
        )


@pytest.fixture
async def repository(tmp_path):
    repo = ChatRepository(tmp_path / "orchat.db")
    await repo.initialize()
    yield repo
    await repo.close()


@pytest.fixture
def gateway() -> MagicMock:
    client = MagicMock()
    client.create_chat_completion = AsyncMock(return_value=_reply("ok"))
    client.aclose = AsyncMock()
    client.is_configured = True
    return client


@pytest.fixture
def files_clients() -> list[FilesClient]:
    return []


@pytest.fixture
def orchestrator(repository, gateway, files_clients):
    def factory(config: MCPServerConfig) -> FilesClient:
        client = FilesClient(config)
        files_clients.append(client)
        return client

    pool = MCPConnectionPool(
        [MCPServerConfig(name="files", command="python")], client_factory=factory
    )
    return CompletionOrchestrator(
        Settings(_env_file=None), repository=repository, client=gateway, tool_pool=pool
    )


def _messages_sent(gateway: MagicMock, call: int) -> list[dict[str, Any]]:
    return gateway.create_chat_completion.await_args_list[call].args[0]["messages"]


async def test_tool_call_reply_is_executed_and_summarized(orchestrator, gateway, files_clients):
    gateway.create_chat_completion.side_effect = [
        _reply('Let me check.\nTOOL_CALL: files.read {"path": "notes.txt"}'),
        _reply("The notes say hello."),
    ]

    message = await orchestrator.complete([{"role": "user", "content": "read my notes"}])

    assert message["content"] == "The notes say hello."
    assert files_clients[0].calls == [("read", {"path": "notes.txt"})]

    system = _messages_sent(gateway, 0)[0]
    assert system["role"] == "system"
    assert "## Server: files" in system["content"]
    assert "- **read**: Read a file" in system["content"]

    follow_up = _messages_sent(gateway, 1)
    assert follow_up[-2] == {"role": "assistant", "content": "Let me check."}
    assert "Tool files.read executed: contents of notes.txt" in follow_up[-1]["content"]


async def test_failed_follow_up_returns_stripped_draft(orchestrator, gateway):
    gateway.create_chat_completion.side_effect = [
        _reply('Checking now.\nTOOL_CALL: files.read {"path": "a.txt"}'),
        OpenRouterError(500, "boom"),
    ]

    message = await orchestrator.complete([{"role": "user", "content": "read a"}])

    assert message["content"] == "Checking now."


async def test_unknown_server_is_reported_to_the_model(orchestrator, gateway):
    gateway.create_chat_completion.side_effect = [
        _reply('TOOL_CALL: git.status {}'),
        _reply("Git is not available."),
    ]

    await orchestrator.complete([{"role": "user", "content": "git status"}])

    follow_up = _messages_sent(gateway, 1)
    assert "Tool git.status failed:" in follow_up[-1]["content"]


async def test_owned_chat_is_persisted_with_title(orchestrator, repository, gateway):
    user = await repository.create_user("bob@example.com", "hash")
    chat = await repository.create_chat(user["id"], None, "openai/gpt-4o")

    await orchestrator.complete(
        [{"role": "user", "content": "Plan a trip to Lisbon"}],
        chat_id=chat["id"],
        user_id=user["id"],
    )

    stored = await repository.list_messages(chat["id"])
    assert [(m["role"], m["content"]) for m in stored] == [
        ("user", "Plan a trip to Lisbon"),
        ("assistant", "ok"),
    ]
    refreshed = await repository.get_chat(chat["id"], user["id"])
    assert refreshed["title"] == "Plan a trip to Lisbon"


async def test_answer_comment_stores_reply(orchestrator, repository, gateway):
    user = await repository.create_user("carol@example.com", "hash")
    chat = await repository.create_chat(user["id"], "Geography", "google/gemini-2.5-pro")
    message = await repository.add_message(chat["id"], "assistant", "Paris is the capital.")
    comment = await repository.create_comment(
        message_id=message["id"],
        user_id=user["id"],
        selected_text="Paris",
        start_offset=0,
        end_offset=5,
        user_comment="How big is it?",
    )
    thread = await repository.get_comment_for_user(comment["id"], user["id"])
    gateway.create_chat_completion.return_value = _reply("About two million people.")

    updated = await orchestrator.answer_comment(thread, user_reply="And the metro area?")

    assert updated["ai_response"] == "About two million people."
    body = gateway.create_chat_completion.await_args.args[0]
    assert body["model"] == "google/gemini-2.5-pro"
    system, user_turn = body["messages"]
    assert "assistant: Paris is the capital." in system["content"]
    assert 'The user selected the following text:\n"Paris"' in system["content"]
    assert user_turn["content"] == "Follow-up question: And the metro area?"


async def test_answer_comment_rejects_malformed_reply(orchestrator, repository, gateway):
    user = await repository.create_user("dan@example.com", "hash")
    chat = await repository.create_chat(user["id"], "t", "openai/gpt-4o")
    message = await repository.add_message(chat["id"], "user", "hello")
    comment = await repository.create_comment(
        message_id=message["id"],
        user_id=user["id"],
        selected_text="hello",
        start_offset=0,
        end_offset=5,
        user_comment="why?",
    )
    thread = await repository.get_comment_for_user(comment["id"], user["id"])
    gateway.create_chat_completion.return_value = {"choices": []}

    with pytest.raises(OpenRouterError):
        await orchestrator.answer_comment(thread)
