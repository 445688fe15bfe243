"""Presence and login endpoints."""

import logging

from fastapi import APIRouter

from ..core import get_core
from ..models import PresenceStartRequest, PresenceState, PresenceUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/presence", tags=["presence"])


@router.get("", response_model=PresenceState)
async def get_presence():
    """Get presence as last pushed to the backend."""
    return get_core().presence.get_presence()


@router.put("", response_model=PresenceState)
async def update_presence(request: PresenceUpdateRequest):
    """
    Change the user's own presence.

    While a call is connected the published status stays Busy and the
    new status takes effect when the call ends.
    """
    presence = get_core().presence
    presence.set_status(request.status)
    await presence.flush()
    return presence.get_presence()


@router.post("/start", response_model=PresenceState)
async def login(request: PresenceStartRequest):
    """Log in an extension: go Online and start listening for calls."""
    core = get_core()
    await core.login(request.extension)
    await core.presence.flush()
    return core.presence.get_presence()


@router.post("/stop", response_model=PresenceState)
async def logout():
    """Log out: end any call, go Offline and stop listening."""
    core = get_core()
    await core.logout()
    return core.presence.get_presence()
