"""Completion pipeline coordinating the repository, OpenRouter, and MCP tools."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping, Sequence

from fastapi import status

from ..openrouter import OpenRouterClient, OpenRouterError
from ..repository import ChatRepository
from ..services.prompts import resolve_prompt_syntax
from .content import derive_title, flatten_to_text, merge_images_into_content, to_multimodal
from .image_detection import detect_images
from .mcp_registry import MCPConnectionPool
from .provider_transform import (
    build_request_body,
    is_gemini_model,
    transform_messages_for_provider,
)
from .tool_protocol import (
    DEFAULT_SYSTEM_PROMPT,
    build_follow_up_messages,
    build_tools_system_prompt,
    enhance_messages_with_tools,
    parse_tool_calls,
    strip_tool_calls,
)

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

Message = dict[str, Any]

COMMENT_REPLY_SYSTEM_PROMPT = """You are a helpful AI assistant. A user asked a question about a specific piece of text from an earlier conversation. Give a clear and concise answer to the user's question.

Context of the full conversation:
{context}

The user selected the following text:
"{selected_text}"

And asked the following question about it:
"{user_comment}\""""


def _append_to_system_message(messages: Sequence[Mapping[str, Any]], block: str) -> list[Message]:
    updated = [dict(message) for message in messages]
    if not block:
        return updated
    for message in updated:
        if message.get("role") == "system":
            message["content"] = flatten_to_text(message.get("content")) + block
            return updated
    return [{"role": "system", "content": DEFAULT_SYSTEM_PROMPT + block}, *updated]


def render_comments_context(comments: Sequence[Mapping[str, Any]]) -> str:
    """Render a chat's comment threads as a block for the system prompt."""

    if not comments:
        return ""
    blocks: list[str] = []
    for comment in comments:
        lines = [
            f'\n--- Note/question on text: "{comment["selected_text"]}" ---',
            f"User: {comment['user_comment']}",
        ]
        if comment.get("ai_response"):
            lines.append(f"AI answer: {comment['ai_response']}")
        else:
            lines.append("(Note - no AI answer)")
        lines.append("--- End of note/question ---")
        blocks.append("\n".join(lines) + "\n")
    return (
        "\n\nIMPORTANT: The user made notes and asked questions about specific parts "
        "of earlier messages. Take them into account:\n" + "\n".join(blocks) + "\n"
    )


def _first_message(response: Mapping[str, Any]) -> Mapping[str, Any] | None:
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, Mapping):
        return None
    message = first.get("message")
    return message if isinstance(message, Mapping) else None


class CompletionOrchestrator:
    """High-level coordination for completion requests."""

    def __init__(
        self,
        settings: Settings,
        *,
        repository: ChatRepository,
        client: OpenRouterClient,
        tool_pool: MCPConnectionPool,
    ):
        self._settings = settings
        self._repo = repository
        self._client = client
        self._pool = tool_pool

    @property
    def repository(self) -> ChatRepository:
        return self._repo

    @property
    def client(self) -> OpenRouterClient:
        return self._client

    @property
    def tool_pool(self) -> MCPConnectionPool:
        return self._pool

    async def initialize(self) -> None:
        await self._repo.initialize()

    async def shutdown(self) -> None:
        try:
            await self._pool.shutdown()
        finally:
            await self._client.aclose()
            await self._repo.close()

    async def _send(self, model: str, messages: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
        transformed = transform_messages_for_provider(messages, model)
        logger.info(
            "Sending request to OpenRouter (model=%s, messages=%d, gemini=%s)",
            model,
            len(transformed),
            is_gemini_model(model),
        )
        return await self._client.create_chat_completion(
            build_request_body(model, transformed)
        )

    async def resolve_prompts(
        self, messages: Sequence[Mapping[str, Any]], user_id: str | None
    ) -> list[Message]:
        """Expand a slash prompt in the final user message for ``user_id``."""

        resolved = [dict(message) for message in messages]
        if user_id is None or not resolved:
            return resolved
        last = resolved[-1]
        content = last.get("content")
        if last.get("role") == "user" and isinstance(content, str):
            last["content"] = await resolve_prompt_syntax(self._repo, user_id, content)
        return resolved

    async def comments_context(self, chat_id: str) -> str:
        try:
            comments = await self._repo.list_comments_for_chat(chat_id)
        except Exception:
            logger.exception("Error fetching comments context for chat %s", chat_id)
            return ""
        return render_comments_context(comments)

    async def _tools_prompt(self) -> str:
        if not self._pool.server_names:
            return ""
        tools = await self._pool.list_all_tools()
        return build_tools_system_prompt(tools)

    async def complete(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str | None = None,
        chat_id: str | None = None,
        user_id: str | None = None,
    ) -> Message:
        """Run the full completion pipeline and return the assistant message."""

        selected_model = model or self._settings.default_completion_model
        original = await self.resolve_prompts(messages, user_id)

        chat: dict[str, Any] | None = None
        if chat_id and user_id:
            chat = await self._repo.get_chat(chat_id, user_id)

        enhanced = list(original)
        if chat is not None:
            enhanced = _append_to_system_message(enhanced, await self.comments_context(chat["id"]))
        enhanced = enhance_messages_with_tools(enhanced, await self._tools_prompt())

        response = await self._send(selected_model, enhanced)
        assistant_message = _first_message(response)
        if assistant_message is None:
            logger.error("Unexpected response structure from OpenRouter: %s", response)
            raise OpenRouterError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Unexpected response structure from OpenRouter",
            )

        images = detect_images(response)
        reasoning = assistant_message.get("reasoning")
        reasoning_text = str(reasoning) if reasoning else None
        final_content = to_multimodal(assistant_message.get("content"), reasoning_text)
        text = flatten_to_text(assistant_message.get("content"))
        if not text.strip() and reasoning_text:
            text = reasoning_text
        if images:
            final_content = merge_images_into_content(text, images)

        if text:
            reply = await self._finalize_tool_calls(text, enhanced, selected_model)
            if reply != text:
                final_content = to_multimodal(reply)

        if chat is not None and user_id is not None:
            await self._persist(chat, original, final_content)

        return {**assistant_message, "content": final_content}

    async def _finalize_tool_calls(
        self, draft: str, messages: Sequence[Mapping[str, Any]], model: str
    ) -> str:
        calls = parse_tool_calls(draft)
        if not calls:
            return draft

        logger.info("Executing %d tool call(s) from model reply", len(calls))
        results = await self._pool.execute_tool_calls(calls)
        follow_up = build_follow_up_messages(messages, draft, results)
        try:
            response = await self._send(model, follow_up)
        except OpenRouterError as exc:
            logger.warning("Follow-up completion after tool calls failed: %s", exc.detail)
            return strip_tool_calls(draft)

        message = _first_message(response)
        if message is None:
            return strip_tool_calls(draft)
        return flatten_to_text(message.get("content"))

    async def _persist(
        self,
        chat: Mapping[str, Any],
        messages: Sequence[Mapping[str, Any]],
        assistant_content: Any,
    ) -> None:
        """Store the new user turn and the reply; failures are logged only."""

        try:
            last = messages[-1] if messages else None
            if last is not None and last.get("role") == "user":
                await self._repo.add_message(chat["id"], "user", last.get("content"))
                if not chat.get("title"):
                    title = derive_title(last.get("content"))
                    if title:
                        await self._repo.update_chat_title(chat["id"], chat["user_id"], title)
            await self._repo.add_message(chat["id"], "assistant", assistant_content)
        except Exception:
            logger.exception("Error saving messages for chat %s", chat.get("id"))

    async def simple_completion(
        self, messages: Sequence[Mapping[str, Any]], *, model: str | None = None
    ) -> Message:
        """Forward ``messages`` unchanged and return the assistant message."""

        selected_model = model or self._settings.default_completion_model
        response = await self._client.create_chat_completion(
            {"model": selected_model, "messages": list(messages), "stream": False}
        )
        message = _first_message(response)
        if message is None:
            raise OpenRouterError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Unexpected response structure from OpenRouter",
            )
        return dict(message)

    async def answer_comment(
        self, comment: Mapping[str, Any], *, user_reply: str | None = None
    ) -> dict[str, Any] | None:
        """Ask the chat's model about a comment and store the answer on it."""

        history = await self._repo.list_messages(comment["chat_id"])
        context = "\n\n".join(
            f"{message['role']}: {flatten_to_text(message['content'])}" for message in history
        )
        system_prompt = COMMENT_REPLY_SYSTEM_PROMPT.format(
            context=context,
            selected_text=comment["selected_text"],
            user_comment=comment["user_comment"],
        )
        user_prompt = (
            f"Follow-up question: {user_reply}"
            if user_reply
            else "Answer the user's question."
        )
        model = comment.get("chat_model") or self._settings.default_chat_model
        response = await self._client.create_chat_completion(
            {
                "model": model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "stream": False,
            }
        )
        message = _first_message(response)
        if message is None:
            raise OpenRouterError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to generate AI response"
            )
        answer = flatten_to_text(message.get("content"))
        return await self._repo.update_comment_ai_response(comment["id"], answer)


__all__ = ["CompletionOrchestrator", "render_comments_context"]
