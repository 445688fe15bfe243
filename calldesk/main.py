"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import __version__
from .config import get_settings
from .api import (
    calls_router,
    offers_router,
    signaling_router,
    notifications_router,
    presence_router,
    events_router,
)
from .core import get_core

# Configure logging
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    logger.info(f"calldesk starting, backend: {settings.backend_url}")
    core = get_core()
    if settings.extension:
        await core.login(settings.extension)
    yield
    logger.info("calldesk shutting down")
    await core.stop()


# Create FastAPI app
app = FastAPI(
    title="calldesk",
    description="Call session control for a browser softphone",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers
app.include_router(calls_router)
app.include_router(offers_router)
app.include_router(signaling_router)
app.include_router(notifications_router)
app.include_router(presence_router)
app.include_router(events_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    details = get_core().health()
    degraded = details["listening"] and not details["signaling_connected"]
    return {"status": "degraded" if degraded else "healthy", **details}


def run():
    """Run the server with uvicorn."""
    import uvicorn

    uvicorn.run("calldesk.main:app", host=settings.host, port=settings.port)
