"""
Main entry point for the FastAPI application.
Configures lifespan events and mounts routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from chathub.api.routes import router as api_router
from chathub.config.settings import Settings, settings
from chathub.services.hub import ChatHub

# Setup Logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Disable these warnings as they are false positives caused by fasapi syntax
# pylint: disable=redefined-outer-name
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application Lifecycle Manager.
    Handles startup logging and shutdown (closing live sockets).
    """
    hub: ChatHub = app.state.hub
    logger.info("Starting %s (rooms: %s)...", hub.config.app_name, ", ".join(hub.rooms.catalog()))

    yield

    logger.info("Shutting down %s...", hub.config.app_name)
    await hub.shutdown()


def create_app(config: Optional[Settings] = None, hub: Optional[ChatHub] = None) -> FastAPI:
    """Factory to create the app, each app owns its own hub."""
    config = config or settings
    application = FastAPI(
        title=config.app_name,
        description="Real-time multi-room chat hub",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.hub = hub or ChatHub(config)

    # Middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[config.client_url],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Routers
    application.include_router(api_router, prefix="/api")

    @application.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Chat server is running"

    return application


app = create_app()


def run() -> None:
    """Serves the app with uvicorn on the configured host and port."""
    uvicorn.run(app, host=settings.server_host, port=settings.server_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
