"""Outbound call endpoints."""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from ..core import get_core
from ..errors import CallError
from ..models import SessionResponse, StartCallRequest
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])


def session_response() -> SessionResponse:
    sessions = get_core().sessions
    return SessionResponse(state=sessions.state, session=sessions.get_current_session())


@router.get("/current", response_model=SessionResponse)
async def get_current_call():
    """Get the current call, if any."""
    return session_response()


@router.post("", response_model=SessionResponse, status_code=201)
async def start_call(request: StartCallRequest):
    """
    Place an outbound call.

    Returns once the backend acknowledged the dial (or the call ended
    while dialing).
    """
    core = get_core()

    try:
        session = await core.sessions.start_call(request.extension, request.display_name)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CallError as e:
        raise http_error(e)

    logger.info(f"Call to {session.peer_extension} is {session.state.value}")
    return SessionResponse(state=session.state, session=session)


@router.delete("/current", response_model=SessionResponse)
async def end_call():
    """End the current call. Hangup failures are reported as notifications."""
    core = get_core()

    try:
        await core.sessions.end_call()
    except CallError as e:
        raise http_error(e)

    return session_response()
