"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
import traceback
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Any, Sequence

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .chat import CompletionOrchestrator
from .chat.mcp_registry import MCPConnectionPool, load_env_server_configs, load_server_configs
from .config import get_settings
from .openrouter import OpenRouterClient
from .repository import ChatRepository
from .routers.auth import router as auth_router
from .routers.chats import router as chats_router
from .routers.comments import router as comments_router
from .routers.completions import router as completions_router
from .routers.files import router as files_router
from .routers.mcp import router as mcp_router
from .routers.prompts import router as prompts_router
from .services.email import EmailSender
from .services.storage import LocalFileStore
from .services.storage_cleanup import cleanup_expired_files

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env first so LOG_LEVEL and LOG_FILE are visible
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("orchat").setLevel(log_level)
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).setLevel(log_level)

    # Request/response bodies from httpx are only useful at DEBUG
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def _first_validation_message(errors: Sequence[dict[str, Any]]) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    ctx = first.get("ctx") or {}
    if isinstance(ctx.get("error"), Exception):
        return str(ctx["error"])
    if first.get("type") == "json_invalid":
        return "Invalid JSON body"
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg", "Invalid request"))
    return f"{location}: {message}" if location else message


def create_app() -> FastAPI:
    _configure_logging()

    settings = get_settings()

    project_root = Path(__file__).resolve().parent.parent.parent

    def _resolve_under(base: Path, p: Path) -> Path:
        # Absolute paths are used as-is (tests, external mounts).
        if p.is_absolute():
            return p.resolve()
        resolved = (base / p).resolve()
        if not resolved.is_relative_to(base):
            raise ValueError(f"Configured path {resolved} escapes project root {base}")
        return resolved

    repository = ChatRepository(_resolve_under(project_root, settings.database_path))

    mcp_servers_path = (
        _resolve_under(project_root, settings.mcp_servers_path)
        if settings.mcp_servers_path is not None
        else None
    )
    tool_pool = MCPConnectionPool(
        load_server_configs(mcp_servers_path, fallback=load_env_server_configs())
    )

    orchestrator = CompletionOrchestrator(
        settings,
        repository=repository,
        client=OpenRouterClient(settings),
        tool_pool=tool_pool,
    )

    file_store = LocalFileStore(
        _resolve_under(project_root, settings.file_storage_dir),
        public_url=settings.app_url,
        max_size_bytes=settings.max_file_size_bytes,
        allowed_types=settings.allowed_file_type_list,
    )
    email_sender = EmailSender(settings)

    cleanup_interval_seconds = settings.cleanup_interval_minutes * 60
    cleanup_task: asyncio.Task | None = None

    async def _sweep() -> None:
        await asyncio.to_thread(
            cleanup_expired_files, file_store, retention=settings.file_retention
        )
        await repository.delete_expired_sessions()

    async def _cleanup_loop() -> None:
        while True:
            await asyncio.sleep(cleanup_interval_seconds)
            try:
                await _sweep()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Scheduled cleanup run failed: %s", exc)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal cleanup_task
        await orchestrator.initialize()
        logger.info(
            "Started with %d MCP server(s): %s",
            len(tool_pool.server_names),
            ", ".join(tool_pool.server_names) or "none",
        )
        try:
            await _sweep()
        except Exception as exc:
            logger.warning("Initial cleanup failed: %s", exc)
        if cleanup_interval_seconds > 0:
            cleanup_task = asyncio.create_task(_cleanup_loop())
        try:
            yield
        finally:
            if cleanup_task is not None:
                cleanup_task.cancel()
                with suppress(asyncio.CancelledError):
                    await cleanup_task
            try:
                await asyncio.wait_for(orchestrator.shutdown(), timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Orchestrator shutdown timed out after 10s")
            except Exception as exc:
                logger.warning("Error during orchestrator shutdown: %s", exc)

    app = FastAPI(
        title="OpenRouter Chat Backend",
        version="0.1.0",
        description="Multi-user chat backend powered by OpenRouter and MCP tools.",
        lifespan=lifespan,
    )

    app.state.repository = repository
    app.state.chat_orchestrator = orchestrator
    app.state.tool_pool = tool_pool
    app.state.file_store = file_store
    app.state.email_sender = email_sender

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": _first_validation_message(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        if settings.is_development:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        else:
            logger.error(
                "Unhandled error on %s %s: %s", request.method, request.url.path, exc
            )
        content: dict[str, Any] = {"detail": "Internal server error", "error": str(exc)}
        if settings.is_development:
            content["stack"] = "".join(traceback.format_exception(exc))
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    app.include_router(auth_router)
    app.include_router(chats_router)
    app.include_router(prompts_router)
    app.include_router(comments_router)
    app.include_router(completions_router)
    app.include_router(files_router)
    app.include_router(mcp_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> JSONResponse:
        try:
            user_count = await repository.count_users()
        except Exception as exc:
            logger.error("Health check database query failed: %s", exc)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "error", "database": "unavailable", "error": str(exc)},
            )
        return JSONResponse(
            content={
                "status": "ok",
                "database": "connected",
                "userCount": user_count,
                "mcpServers": tool_pool.server_names,
            }
        )

    return app


__all__ = ["create_app"]
