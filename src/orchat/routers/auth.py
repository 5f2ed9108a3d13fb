"""Account registration, sessions, and password reset routes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..config import Settings, get_settings
from ..repository import ChatRepository, parse_db_timestamp
from ..schemas.auth import (
    GENERIC_RESET_MESSAGE,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageOnlyResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from ..services.auth import (
    MIN_PASSWORD_LENGTH,
    clear_session_cookie,
    extract_session_token,
    get_current_user,
    get_repository,
    hash_password,
    is_valid_email,
    new_reset_token,
    normalize_email,
    public_user,
    reset_token_expiry,
    start_session,
    verify_password,
)
from ..services.email import EmailDeliveryError, EmailSender

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

_PASSWORD_TOO_SHORT = f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"


def get_email_sender(request: Request) -> EmailSender:
    sender = getattr(request.app.state, "email_sender", None)
    if sender is None:
        raise HTTPException(status_code=500, detail="Email service unavailable")
    return sender


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    response: Response,
    repository: ChatRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    email = normalize_email(payload.email)
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email address")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=_PASSWORD_TOO_SHORT)
    if await repository.get_user_by_email(email) is not None:
        raise HTTPException(status_code=400, detail="User with this email already exists")

    name = payload.name.strip() if payload.name and payload.name.strip() else None
    user = await repository.create_user(email, hash_password(payload.password), name)
    await start_session(repository, response, user["id"], settings)
    logger.info("Registered user %s", user["id"])
    return {"user": public_user(user)}


@router.post("/auth/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    response: Response,
    repository: ChatRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    user = await repository.get_user_by_email(normalize_email(payload.email))
    if user is None or not verify_password(payload.password, user["password_hash"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password"
        )
    token = await start_session(repository, response, user["id"], settings)
    return {"user": public_user(user), "token": token}


@router.post("/auth/logout", response_model=MessageOnlyResponse)
async def logout(
    request: Request,
    response: Response,
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, str]:
    token = extract_session_token(request)
    if token:
        await repository.delete_session(token)
    clear_session_cookie(response)
    return {"message": "Logged out"}


@router.get("/auth/me", response_model=UserResponse)
async def current_user(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return {"user": public_user(user)}


@router.post("/auth/forgot-password", response_model=MessageOnlyResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    repository: ChatRepository = Depends(get_repository),
    sender: EmailSender = Depends(get_email_sender),
) -> dict[str, str]:
    """Start a password reset; the answer never reveals whether the email exists."""

    user = await repository.get_user_by_email(normalize_email(payload.email))
    if user is None:
        return {"message": GENERIC_RESET_MESSAGE}

    token = new_reset_token()
    await repository.replace_reset_token(user["id"], token, reset_token_expiry())
    try:
        await sender.send_password_reset(user["email"], token)
    except EmailDeliveryError as exc:
        logger.error("Failed to send reset email for user %s: %s", user["id"], exc)
    return {"message": GENERIC_RESET_MESSAGE}


@router.post("/auth/reset-password", response_model=MessageOnlyResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    repository: ChatRepository = Depends(get_repository),
) -> dict[str, str]:
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=_PASSWORD_TOO_SHORT)

    record = await repository.get_reset_token(payload.token)
    if record is None:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")

    expires_at = parse_db_timestamp(record["expires_at"])
    if expires_at is None or expires_at < datetime.now(timezone.utc):
        await repository.delete_reset_token(record["id"])
        raise HTTPException(
            status_code=400, detail="Reset token has expired. Please request a new one."
        )
    if record["used"]:
        raise HTTPException(status_code=400, detail="This reset token has already been used")

    await repository.complete_password_reset(
        record["id"], record["user_id"], hash_password(payload.password)
    )
    logger.info("Password reset completed for user %s", record["user_id"])
    return {"message": "Password has been reset successfully"}


__all__ = ["router"]
