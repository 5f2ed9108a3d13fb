"""Transactional email delivery through the Resend HTTP API."""

from __future__ import annotations

import html
import logging
from typing import Any

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    """Raised when an email could not be handed to the provider."""


def render_password_reset_email(reset_url: str) -> tuple[str, str, str]:
    subject = "Reset your password"
    text = (
        "You asked to reset your password.\n\n"
        f"Open this link to choose a new one: {reset_url}\n\n"
        "The link is valid for 1 hour. If you did not make this request, ignore this email."
    )
    safe_url = html.escape(reset_url, quote=True)
    body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #333;">Reset your password</h2>
      <p>You asked to reset your password. Click the button below to choose a new one:</p>
      <p><a href="{safe_url}" style="display:inline-block;padding:12px 24px;background-color:#0070f3;color:white;text-decoration:none;border-radius:5px;">Reset password</a></p>
      <p>Or copy and paste this link into your browser:</p>
      <p style="word-break: break-all; color: #666;">{safe_url}</p>
      <p style="color: #999; font-size: 12px; margin-top: 30px;">This link is valid for 1 hour. If you did not make this request, ignore this email.</p>
    </div>
    """
    return subject, text, body


class EmailSender:
    """Send messages via Resend using a short-lived ``httpx`` client."""

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        key = self._settings.resend_api_key
        return key is not None and bool(key.get_secret_value())

    def reset_url(self, token: str) -> str:
        return f"{self._settings.app_url.rstrip('/')}/reset-password?token={token}"

    async def send(
        self, to_email: str, subject: str, text_body: str, html_body: str | None = None
    ) -> dict[str, Any]:
        if not self.is_configured:
            raise EmailDeliveryError("Email service not configured")
        api_key = self._settings.resend_api_key
        assert api_key is not None

        payload: dict[str, Any] = {
            "from": self._settings.resend_from_email,
            "to": [to_email],
            "subject": subject,
            "text": text_body,
        }
        if html_body:
            payload["html"] = html_body

        url = f"{self._settings.resend_base_url.rstrip('/')}/emails"
        async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
            try:
                response = await client.post(
                    url,
                    headers={"Authorization": f"Bearer {api_key.get_secret_value()}"},
                    json=payload,
                )
            except httpx.HTTPError as exc:
                raise EmailDeliveryError(f"Failed to send email: {exc}") from exc

        if response.status_code >= 400:
            raise EmailDeliveryError(
                f"Email provider returned {response.status_code}: {response.text}"
            )
        return response.json()

    async def send_password_reset(self, to_email: str, token: str) -> None:
        subject, text_body, html_body = render_password_reset_email(self.reset_url(token))
        await self.send(to_email, subject, text_body, html_body)
        logger.info("Password reset email sent")


__all__ = ["EmailDeliveryError", "EmailSender", "render_password_reset_email"]
