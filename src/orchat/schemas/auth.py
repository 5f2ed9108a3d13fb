"""Pydantic models for account and password reset endpoints."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, model_validator

GENERIC_RESET_MESSAGE = "If the email exists, a password reset link has been sent."


class RegisterRequest(BaseModel):
    email: Any = None
    password: Any = None
    name: Optional[str] = None

    @model_validator(mode="after")
    def _require_fields(self) -> "RegisterRequest":
        if not isinstance(self.email, str) or not self.email.strip():
            raise ValueError("Email is required")
        if not isinstance(self.password, str) or not self.password:
            raise ValueError("Password is required")
        return self


class LoginRequest(BaseModel):
    email: Any = None
    password: Any = None

    @model_validator(mode="after")
    def _require_fields(self) -> "LoginRequest":
        if not isinstance(self.email, str) or not isinstance(self.password, str):
            raise ValueError("Email and password are required")
        if not self.email.strip() or not self.password:
            raise ValueError("Email and password are required")
        return self


class ForgotPasswordRequest(BaseModel):
    email: Any = None

    @model_validator(mode="after")
    def _require_email(self) -> "ForgotPasswordRequest":
        if not isinstance(self.email, str) or not self.email.strip():
            raise ValueError("Email is required")
        return self


class ResetPasswordRequest(BaseModel):
    token: Any = None
    password: Any = None

    @model_validator(mode="after")
    def _require_fields(self) -> "ResetPasswordRequest":
        if not isinstance(self.token, str) or not self.token:
            raise ValueError("Token and password are required")
        if not isinstance(self.password, str) or not self.password:
            raise ValueError("Token and password are required")
        return self


class UserResource(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    createdAt: Optional[str] = None


class UserResponse(BaseModel):
    user: UserResource


class LoginResponse(BaseModel):
    user: UserResource
    token: str


class MessageOnlyResponse(BaseModel):
    message: str


__all__ = [
    "ForgotPasswordRequest",
    "GENERIC_RESET_MESSAGE",
    "LoginRequest",
    "LoginResponse",
    "MessageOnlyResponse",
    "RegisterRequest",
    "ResetPasswordRequest",
    "UserResource",
    "UserResponse",
]
