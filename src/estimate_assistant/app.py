"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat import ChatOrchestrator
from .config import ConfigurationError, Settings, get_settings
from .routers.chat import router as chat_router
from .routers.estimates import router as estimates_router
from .tools import build_estimate_renderer, build_tool_executor

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL and LOG_FILE environment variables."""
    # Load .env first so LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("estimate_assistant").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # httpx logs every request line at INFO
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(settings: Settings | None = None) -> FastAPI:
    _configure_logging()

    settings = settings or get_settings()

    renderer = build_estimate_renderer(settings)
    tool_executor = build_tool_executor(settings, renderer)
    orchestrator = ChatOrchestrator(settings, tool_executor)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            settings.require_assistant_credentials()
        except ConfigurationError as exc:
            logging.warning("%s; chat requests will be rejected", exc)
        try:
            yield
        finally:
            try:
                await asyncio.wait_for(orchestrator.shutdown(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Orchestrator shutdown timed out after 10s")
            except Exception as exc:
                logging.warning("Error during orchestrator shutdown: %s", exc)

    app = FastAPI(
        title="Estimate Assistant Backend",
        version="0.1.0",
        description="Streaming assistant chat relay with PDF estimate generation.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.chat_orchestrator = orchestrator
    app.state.tool_executor = tool_executor
    app.state.estimate_renderer = renderer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(estimates_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | bool]:
        try:
            settings.require_assistant_credentials()
            configured = True
        except ConfigurationError:
            configured = False
        return {"status": "ok", "assistant_configured": configured}

    return app


__all__ = ["create_app"]
