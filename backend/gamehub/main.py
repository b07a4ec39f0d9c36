"""GameHub Realtime backend application.

Entry point for the realtime messaging and presence service of the GameHub
gaming-community platform: event chat rooms, typing indicators, presence
counts, reactions and message notifications.

Modules:
    - chat: event message REST API and the /ws realtime socket
    - realtime: wire protocol, room registry, broadcast and presence
    - storage: DuckDB-based message, profile and notification storage
    - notifications: notification REST API
    - auth: identity forwarded by the auth proxy
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gamehub.chat.router import router as chat_router
from gamehub.config import get_config
from gamehub.notifications.router import router as notifications_router
from gamehub.realtime.hub import get_hub
from gamehub.storage.service import ChatStore, get_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# websockets logs every frame at DEBUG; httpx/httpcore log every connection.
for _noisy in (
    "websockets",
    "websockets.client",
    "websockets.server",
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in gamehub.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    get_store()
    get_hub()
    logger.info(
        f"Realtime endpoint {config.realtime.endpoint_path} ready on "
        f"http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown
    ChatStore.reset_instance()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="GameHub Realtime API",
    description="Realtime messaging and presence for GameHub event rooms",
    version="0.1.0",
    lifespan=lifespan,
)

# Register all routers
app.include_router(chat_router)
app.include_router(notifications_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
