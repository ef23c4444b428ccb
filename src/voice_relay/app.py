"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .llm import ChatStreamClient
from .routers.relay import router as relay_router
from .services.sessions import SessionRegistry
from .services.tts import DashScopeTTSClient

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
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

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("voice_relay").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Request bodies are only interesting when debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = settings or get_settings()
    registry = SessionRegistry(settings)
    llm_client = ChatStreamClient(settings)
    tts_client = DashScopeTTSClient(settings)

    sweep_task: asyncio.Task | None = None

    async def _session_sweep_loop() -> None:
        max_idle = timedelta(seconds=settings.session_idle_ttl_seconds)
        while True:
            await asyncio.sleep(settings.session_sweep_interval_seconds)
            try:
                registry.expire_idle(max_idle)
            except Exception as exc:
                logger.warning("Session sweep failed: %s", exc)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal sweep_task
        # Missing configuration aborts startup here
        for session_id in settings.preset_session_ids:
            registry.register(registry.create(session_id))

        if settings.session_idle_ttl_seconds > 0:
            sweep_task = asyncio.create_task(_session_sweep_loop())
        try:
            yield
        finally:
            if sweep_task is not None:
                sweep_task.cancel()
                with suppress(asyncio.CancelledError):
                    await sweep_task
            for session_id in registry.session_ids():
                registry.remove(session_id)
            await ChatStreamClient.aclose_shared()
            await DashScopeTTSClient.close_http_client()

    app = FastAPI(
        title="Voice Relay Backend",
        version="0.1.0",
        description="Relays streaming chat completions as text and synthesized speech.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_registry = registry
    app.state.llm_client = llm_client
    app.state.tts_client = tts_client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(relay_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | int | None]:
        return {
            "status": "ok",
            "sessions": len(registry),
            "model": settings.openai_api_model,
        }

    return app


__all__ = ["create_app"]
