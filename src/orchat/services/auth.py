"""Password hashing, session tokens, and the request authentication dependency."""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, Response, status
from passlib.hash import bcrypt

from ..config import Settings
from ..repository import ChatRepository

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "session"
MIN_PASSWORD_LENGTH = 8
RESET_TOKEN_TTL = timedelta(hours=1)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def hash_password(password: str) -> str:
    return bcrypt.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.verify(password, password_hash)
    except ValueError:
        logger.warning("Stored password hash could not be parsed")
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_PATTERN.match(email))


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def new_reset_token() -> str:
    return secrets.token_hex(32)


def reset_token_expiry(now: datetime | None = None) -> datetime:
    return (now or datetime.now(timezone.utc)) + RESET_TOKEN_TTL


def public_user(record: dict[str, Any]) -> dict[str, Any]:
    """Strip credentials from a user row before returning it to clients."""

    return {
        "id": record["id"],
        "email": record["email"],
        "name": record.get("name"),
        "createdAt": record.get("created_at"),
    }


async def start_session(
    repository: ChatRepository,
    response: Response,
    user_id: str,
    settings: Settings,
) -> str:
    """Create a session row and attach its token as an HTTP-only cookie."""

    token = new_session_token()
    ttl = settings.session_ttl
    await repository.create_session(token, user_id, datetime.now(timezone.utc) + ttl)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        max_age=int(ttl.total_seconds()),
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )
    return token


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")


def get_repository(request: Request) -> ChatRepository:
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise HTTPException(status_code=500, detail="Database unavailable")
    return repository


def extract_session_token(request: Request) -> str | None:
    authorization = request.headers.get("authorization") or ""
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(SESSION_COOKIE_NAME) or None


async def get_optional_user(
    request: Request,
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, Any] | None:
    token = extract_session_token(request)
    if not token:
        return None
    return await repository.get_session_user(token)


async def get_current_user(
    user: dict[str, Any] | None = Depends(get_optional_user),
) -> dict[str, Any]:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


__all__ = [
    "MIN_PASSWORD_LENGTH",
    "SESSION_COOKIE_NAME",
    "clear_session_cookie",
    "extract_session_token",
    "get_current_user",
    "get_optional_user",
    "get_repository",
    "hash_password",
    "is_valid_email",
    "new_reset_token",
    "normalize_email",
    "public_user",
    "reset_token_expiry",
    "start_session",
    "verify_password",
]
