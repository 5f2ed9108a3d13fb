"""Thin async client for the OpenRouter chat completions API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class OpenRouterError(Exception):
    """Raised when OpenRouter is unreachable or answers with an error status.

    ``status_code`` is the upstream status for API errors and 502 for transport
    failures; ``detail`` is the most specific message that could be extracted.
    """

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


def extract_error_detail(response: httpx.Response) -> Any:
    """Pull ``error.message`` out of an OpenRouter error body when present."""

    if not response.content:
        return "OpenRouter returned an empty error response."
    try:
        payload = response.json()
    except ValueError:
        return response.content.decode("utf-8", errors="ignore")
    if not isinstance(payload, dict):
        return payload
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("message") or error
    return error or payload


class OpenRouterClient:
    """Issue non-streaming requests to OpenRouter.

    HTTP connections are shared by every instance with the same base URL and
    timeout, so creating a client per app (or per test) stays cheap.
    """

    _shared_clients: dict[tuple[str, float], httpx.AsyncClient] = {}
    _shared_lock: asyncio.Lock = asyncio.Lock()

    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        key = self._settings.openrouter_api_key
        return key is not None and bool(key.get_secret_value())

    @property
    def _base_url(self) -> str:
        return str(self._settings.openrouter_base_url).rstrip("/")

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    def _build_headers(self) -> dict[str, str]:
        api_key = self._settings.openrouter_api_key
        if api_key is None or not api_key.get_secret_value():
            raise OpenRouterError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "OpenRouter API key is not configured",
            )
        headers = {
            "Authorization": f"Bearer {api_key.get_secret_value()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        # OpenRouter attributes traffic to the calling site with these two
        referer = self._settings.openrouter_site_url or self._settings.app_url
        if referer:
            headers["HTTP-Referer"] = referer
        if self._settings.openrouter_site_name:
            headers["X-Title"] = self._settings.openrouter_site_name
        return headers

    async def _http(self) -> httpx.AsyncClient:
        key = self._client_key()
        shared = type(self)._shared_clients
        client = shared.get(key)
        if client is not None:
            return client
        async with type(self)._shared_lock:
            client = shared.get(key)
            if client is None:
                client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._settings.request_timeout, connect=10.0),
                    limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                    http2=True,
                )
                shared[key] = client
        return client

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = self._build_headers()
        client = await self._http()
        try:
            response = await client.request(
                method, f"{self._base_url}{path}", headers=headers, **kwargs
            )
        except httpx.HTTPError as exc:
            logger.warning("OpenRouter %s %s failed: %s", method, path, exc)
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.is_error:
            detail = extract_error_detail(response)
            logger.warning(
                "OpenRouter %s %s returned %s: %s", method, path, response.status_code, detail
            )
            raise OpenRouterError(response.status_code, detail)

        try:
            body = response.json()
        except ValueError as exc:
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, "OpenRouter returned invalid JSON"
            ) from exc
        if not isinstance(body, dict):
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, "OpenRouter returned a non-object response"
            )
        return body

    async def create_chat_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST ``payload`` to ``/chat/completions`` and return the decoded body."""

        logger.debug(
            "Requesting completion (model=%s, messages=%d)",
            payload.get("model"),
            len(payload.get("messages") or []),
        )
        return await self._request("POST", "/chat/completions", json=payload)

    async def list_models(
        self, *, params: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        return await self._request("GET", "/models", params=params)

    async def aclose(self) -> None:
        await type(self).aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._shared_lock:
            clients = list(cls._shared_clients.values())
            cls._shared_clients.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception as exc:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close HTTP client: %s", exc)


__all__ = ["OpenRouterClient", "OpenRouterError", "extract_error_detail"]
