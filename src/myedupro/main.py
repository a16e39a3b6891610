"""FastAPI application entry point."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from myedupro.api.routes import router
from myedupro.api.websocket import handle_state_websocket
from myedupro.auth.orchestrator import SessionOrchestrator
from myedupro.backend.factory import create_gateway
from myedupro.config import get_settings
from myedupro.storage.local_state import LocalStateStore


def configure_logging() -> None:
    """JSON logs in production, console rendering everywhere else."""
    is_production = os.getenv("ENV", "development").lower() == "production"
    if is_production:
        renderer = structlog.processors.JSONRenderer()
        level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        level = logging.DEBUG
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    state_store = LocalStateStore(settings.local_state_path)
    gateway = await create_gateway(settings, state_store)
    orchestrator = SessionOrchestrator(
        gateway,
        state_store,
        session_check_timeout=settings.session_check_timeout_seconds,
        default_subjects=settings.default_subjects,
        picture_bucket=settings.profile_picture_bucket,
    )
    app.state.state_store = state_store
    app.state.orchestrator = orchestrator
    await orchestrator.start()
    logger.info("orchestrator_started", gateway=type(gateway).__name__)
    try:
        yield
    finally:
        await orchestrator.close()
        await gateway.aclose()
        logger.info("orchestrator_stopped")


app = FastAPI(title="MyEduPro", version="0.1.0", lifespan=lifespan)
_allowed_origins_env = os.getenv(
    "ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
)
allowed_origins = [o.strip() for o in _allowed_origins_env.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Browser WebSocket endpoint streaming auth snapshots."""
    await handle_state_websocket(websocket, websocket.app.state.orchestrator)


def main() -> None:
    """Run the application."""
    settings = get_settings()
    uvicorn.run(
        "myedupro.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
