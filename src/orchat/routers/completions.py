"""Completion routes backed by OpenRouter."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..chat import CompletionOrchestrator
from ..openrouter import OpenRouterClient, OpenRouterError
from ..schemas.chat import CompletionRequest, CompletionResponse
from ..services.auth import get_optional_user
from ..services.prompts import PromptNotFound
from .comments import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["completions"])

_MODELS_CACHE_TTL_SECONDS = 60
_models_cache: dict[str, Any] | None = None
_models_cache_expiry: float = 0.0
_models_cache_lock: asyncio.Lock = asyncio.Lock()


def _require_api_key(orchestrator: CompletionOrchestrator) -> None:
    if not orchestrator.client.is_configured:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="OpenRouter API key is not configured",
        )


def _gateway_error(exc: OpenRouterError) -> HTTPException:
    code = exc.status_code if exc.status_code >= 400 else status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=exc.detail)


@router.post("/completions", response_model=CompletionResponse)
async def create_completion(
    payload: CompletionRequest,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
) -> dict[str, Any]:
    """Run the full pipeline: prompts, comments, tools, provider transform, persist."""

    _require_api_key(orchestrator)
    try:
        message = await orchestrator.complete(
            payload.message_dicts(),
            model=payload.model,
            chat_id=payload.chat_id,
            user_id=user["id"] if user else None,
        )
    except PromptNotFound as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OpenRouterError as exc:
        logger.error("OpenRouter completion failed (%s): %s", exc.status_code, exc.detail)
        raise _gateway_error(exc) from exc
    return {"message": message}


@router.post("/chat", response_model=CompletionResponse)
async def simple_chat(
    payload: CompletionRequest,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    _require_api_key(orchestrator)
    try:
        message = await orchestrator.simple_completion(
            payload.message_dicts(), model=payload.model
        )
    except OpenRouterError as exc:
        logger.error("OpenRouter chat failed (%s): %s", exc.status_code, exc.detail)
        raise _gateway_error(exc) from exc
    return {"message": message}


async def _get_models_payload(client: OpenRouterClient) -> dict[str, Any]:
    global _models_cache, _models_cache_expiry

    now = time.monotonic()
    if _models_cache is not None and now < _models_cache_expiry:
        return _models_cache

    async with _models_cache_lock:
        if _models_cache is not None and now < _models_cache_expiry:
            return _models_cache

        payload = await client.list_models()
        _models_cache = payload
        _models_cache_expiry = now + _MODELS_CACHE_TTL_SECONDS
        return payload


def _invalidate_models_cache() -> None:
    global _models_cache, _models_cache_expiry
    _models_cache = None
    _models_cache_expiry = 0.0


@router.get("/models")
async def list_models(
    search: Optional[str] = Query(
        None, description="Case-insensitive substring matched against model id and name."
    ),
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Expose the gateway's model catalog for the model picker."""

    _require_api_key(orchestrator)
    try:
        payload = await _get_models_payload(orchestrator.client)
    except OpenRouterError as exc:
        raise _gateway_error(exc) from exc

    data = payload.get("data")
    if not search or not isinstance(data, list):
        return payload

    needle = search.lower()
    matches = [
        model
        for model in data
        if isinstance(model, dict)
        and (
            needle in str(model.get("id", "")).lower()
            or needle in str(model.get("name", "")).lower()
        )
    ]
    return {**payload, "data": matches}


__all__ = ["router"]
