"""Slash-command expansion of saved prompts."""

from __future__ import annotations

import re

from ..repository import ChatRepository

_SLASH_COMMAND = re.compile(r"^/(\S+)(?:\s+(.*))?$", re.DOTALL)


class PromptNotFound(LookupError):
    def __init__(self, title: str):
        super().__init__(f'Prompt "{title}" not found')
        self.title = title


async def resolve_prompt_syntax(
    repository: ChatRepository, user_id: str, content: str
) -> str:
    """Expand ``/title rest`` into ``"<prompt content> rest"``.

    Titles match case-insensitively. Text that does not start with ``/`` is
    returned unchanged; an unknown title raises :class:`PromptNotFound`.
    """

    stripped = content.strip()
    if not stripped.startswith("/"):
        return content
    match = _SLASH_COMMAND.match(stripped)
    if match is None:
        return content

    title = match.group(1).strip()
    remainder = (match.group(2) or "").strip()
    prompt = await repository.find_prompt_by_title(user_id, title)
    if prompt is None:
        raise PromptNotFound(title)
    if remainder:
        return f"{prompt['content']} {remainder}"
    return prompt["content"]


__all__ = ["PromptNotFound", "resolve_prompt_syntax"]
