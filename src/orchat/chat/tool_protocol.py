"""Plain-text tool invocation protocol understood by any chat model.

Models are told to answer with lines of the form::

    TOOL_CALL: <serverName>.<toolName> <JSON arguments>

The helpers here build that instruction block, pull calls back out of a
reply, and render the execution results for a follow-up request.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from .content import flatten_to_text

logger = logging.getLogger(__name__)

TOOL_CALL_MARKER = "TOOL_CALL:"
TOOL_CALL_PATTERN = re.compile(r"TOOL_CALL:\s*([^.\n]+)\.(\S+)\s+")
_DECODER = json.JSONDecoder()
_TOOL_CALL_LINE = re.compile(r"TOOL_CALL:.*?(?:\n|$)")

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."

FOLLOW_UP_INSTRUCTION = (
    "The tools were executed with the following results:\n\n"
    "{results}\n\n"
    "Give the user a clear summary of what happened and answer their "
    "original request. Do not issue any further TOOL_CALL lines."
)


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool advertised by one configured server."""

    server_name: str
    name: str
    description: str = ""
    input_schema: Mapping[str, Any] = field(default_factory=dict)

    @property
    def parameter_names(self) -> list[str]:
        properties = self.input_schema.get("properties") if self.input_schema else None
        if isinstance(properties, Mapping):
            return list(properties.keys())
        return []


@dataclass(frozen=True)
class ToolCall:
    server_name: str
    tool_name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class ToolCallResult:
    call: ToolCall
    success: bool
    result: str = ""
    error: Optional[str] = None

    def render(self) -> str:
        label = f"{self.call.server_name}.{self.call.tool_name}"
        if self.success:
            return f"Tool {label} executed: {self.result}"
        return f"Tool {label} failed: {self.error or 'unknown error'}"


def build_tools_system_prompt(tools: Sequence[ToolDescriptor]) -> str:
    """Return the instruction block describing ``tools``; empty when none."""

    if not tools:
        return ""

    lines = [
        "",
        "",
        "You have access to the following MCP tools. When the user asks for an "
        "action one of these tools can perform, call it using this exact format "
        "on its own line:",
        "",
        "TOOL_CALL: <serverName>.<toolName> <JSON arguments>",
        "",
        "Available tools:",
        "",
    ]

    grouped: dict[str, list[ToolDescriptor]] = {}
    for tool in tools:
        grouped.setdefault(tool.server_name, []).append(tool)

    for server_name, server_tools in grouped.items():
        lines.append(f"## Server: {server_name}")
        lines.append("")
        for tool in server_tools:
            lines.append(f"- **{tool.name}**: {tool.description}")
            parameters = tool.parameter_names
            if parameters:
                lines.append(f"  Parameters: {', '.join(parameters)}")
        lines.append("")

    example = tools[0]
    example_args = {name: "..." for name in example.parameter_names[:2]}
    lines.append("Example:")
    lines.append(
        f"TOOL_CALL: {example.server_name}.{example.name} {json.dumps(example_args)}"
    )
    lines.append("")
    lines.append("After the tools have run, describe to the user what happened.")
    return "\n".join(lines)


def enhance_messages_with_tools(
    messages: Sequence[Mapping[str, Any]], tools_prompt: str
) -> list[dict[str, Any]]:
    """Attach ``tools_prompt`` to the system message, creating one if needed."""

    enhanced = [dict(message) for message in messages]
    if not tools_prompt:
        return enhanced
    for message in enhanced:
        if message.get("role") == "system":
            message["content"] = flatten_to_text(message.get("content")) + tools_prompt
            return enhanced
    return [{"role": "system", "content": DEFAULT_SYSTEM_PROMPT + tools_prompt}, *enhanced]


def _load_arguments(segment: str) -> Optional[Any]:
    """Decode the first JSON object in ``segment``.

    The object is read with a JSON decoder, so any nesting depth works and
    trailing prose is ignored. When that fails, the widest ``{...}`` span in
    the segment is tried once more.
    """

    start = segment.find("{")
    if start < 0:
        return None
    try:
        value, _ = _DECODER.raw_decode(segment, start)
        return value
    except json.JSONDecodeError:
        pass
    end = segment.rfind("}")
    if end <= start:
        return None
    try:
        return json.loads(segment[start : end + 1])
    except json.JSONDecodeError:
        return None


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Extract every well-formed ``TOOL_CALL`` from ``text``.

    Each call's arguments are read from the text between its header and the
    next ``TOOL_CALL:`` marker, so a malformed call never consumes the one
    after it. A call whose arguments are not a JSON object is logged and
    skipped.
    """

    if not text:
        return []
    calls: list[ToolCall] = []
    for match in TOOL_CALL_PATTERN.finditer(text):
        server_name, tool_name = (group.strip() for group in match.groups())
        boundary = text.find(TOOL_CALL_MARKER, match.end())
        segment = text[match.end() : boundary if boundary >= 0 else len(text)]
        arguments = _load_arguments(segment)
        if not isinstance(arguments, dict):
            logger.warning(
                "Discarding tool call %s.%s with unparsable arguments: %s",
                server_name,
                tool_name,
                segment.strip(),
            )
            continue
        calls.append(
            ToolCall(server_name=server_name, tool_name=tool_name, arguments=arguments)
        )
    return calls


def strip_tool_calls(text: str) -> str:
    return _TOOL_CALL_LINE.sub("", text).strip()


def render_tool_results(results: Iterable[ToolCallResult]) -> str:
    return "\n".join(result.render() for result in results)


def build_follow_up_messages(
    messages: Sequence[Mapping[str, Any]],
    draft: str,
    results: Sequence[ToolCallResult],
) -> list[dict[str, Any]]:
    """Return the conversation used to ask the model for a final summary."""

    follow_up = [dict(message) for message in messages]
    follow_up.append({"role": "assistant", "content": strip_tool_calls(draft)})
    follow_up.append(
        {
            "role": "user",
            "content": FOLLOW_UP_INSTRUCTION.format(results=render_tool_results(results)),
        }
    )
    return follow_up


__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "TOOL_CALL_MARKER",
    "TOOL_CALL_PATTERN",
    "ToolCall",
    "ToolCallResult",
    "ToolDescriptor",
    "build_follow_up_messages",
    "build_tools_system_prompt",
    "enhance_messages_with_tools",
    "parse_tool_calls",
    "render_tool_results",
    "strip_tool_calls",
]
