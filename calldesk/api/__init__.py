"""API endpoints."""

from .calls import router as calls_router
from .offers import router as offers_router
from .signaling import router as signaling_router
from .notifications import router as notifications_router
from .presence import router as presence_router
from .events import router as events_router

__all__ = [
    "calls_router",
    "offers_router",
    "signaling_router",
    "notifications_router",
    "presence_router",
    "events_router",
]
