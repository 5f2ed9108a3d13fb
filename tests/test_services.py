from __future__ import annotations

import json

import httpx
import pytest
from starlette.requests import Request

from orchat.config import Settings
from orchat.repository import ChatRepository
from orchat.services.auth import (
    extract_session_token,
    hash_password,
    is_valid_email,
    normalize_email,
    public_user,
    verify_password,
)
from orchat.services.email import EmailDeliveryError, EmailSender
from orchat.services.prompts import PromptNotFound, resolve_prompt_syntax


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _request(headers: dict[str, str]) -> Request:
    raw = [(key.lower().encode(), value.encode()) for key, value in headers.items()]
    return Request({"type": "http", "headers": raw})


def test_password_hash_roundtrip():
    hashed = hash_password("correct horse")
    assert hashed != "correct horse"
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("anything", None)
    assert not verify_password("anything", "not-a-bcrypt-hash")


def test_email_helpers():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
    assert is_valid_email("alice@example.com")
    assert not is_valid_email("alice@example")
    assert not is_valid_email("not an email")


def test_public_user_hides_hash():
    user = {"id": "u1", "email": "a@b.co", "name": None, "password_hash": "x", "created_at": "t"}
    assert public_user(user) == {"id": "u1", "email": "a@b.co", "name": None, "createdAt": "t"}


def test_session_token_prefers_bearer_header():
    request = _request({"Authorization": "Bearer abc", "Cookie": "session=xyz"})
    assert extract_session_token(request) == "abc"
    assert extract_session_token(_request({"Cookie": "session=xyz"})) == "xyz"
    assert extract_session_token(_request({})) is None


@pytest.mark.anyio
async def test_password_reset_email_is_posted_to_resend():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email-1"})

    settings = Settings(
        resend_api_key="re_test",
        resend_from_email="noreply@example.com",
        app_url="https://chat.example.com",
    )
    sender = EmailSender(settings, transport=httpx.MockTransport(handler))

    await sender.send_password_reset("alice@example.com", "tok123")

    assert captured["url"] == "https://api.resend.com/emails"
    assert captured["auth"] == "Bearer re_test"
    assert captured["body"]["to"] == ["alice@example.com"]
    assert "https://chat.example.com/reset-password?token=tok123" in captured["body"]["text"]


@pytest.mark.anyio
async def test_email_errors_are_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "bad sender"})

    settings = Settings(resend_api_key="re_test")
    sender = EmailSender(settings, transport=httpx.MockTransport(handler))
    with pytest.raises(EmailDeliveryError, match="422"):
        await sender.send("a@b.co", "s", "t")

    unconfigured = EmailSender(Settings(resend_api_key=None))
    with pytest.raises(EmailDeliveryError, match="not configured"):
        await unconfigured.send("a@b.co", "s", "t")


@pytest.mark.anyio
async def test_resolve_prompt_syntax(tmp_path):
    repository = ChatRepository(tmp_path / "chat.db")
    await repository.initialize()
    try:
        user = await repository.create_user("a@example.com", "hash")
        await repository.create_prompt(user["id"], "greet", "Hello!")

        assert await resolve_prompt_syntax(repository, user["id"], "/greet there") == "Hello! there"
        assert await resolve_prompt_syntax(repository, user["id"], "/GREET") == "Hello!"
        assert await resolve_prompt_syntax(repository, user["id"], "plain text") == "plain text"
        with pytest.raises(PromptNotFound, match='Prompt "missing" not found'):
            await resolve_prompt_syntax(repository, user["id"], "/missing now")
    finally:
        await repository.close()
