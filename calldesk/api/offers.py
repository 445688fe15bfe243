"""Inbound offer endpoints."""

import logging

from fastapi import APIRouter

from ..core import get_core
from ..errors import CallError, InvalidStateError
from ..models import OfferResponse, SessionResponse
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/offers", tags=["offers"])


@router.get("/pending", response_model=OfferResponse)
async def get_pending_offer():
    """Get the offer currently shown to the user, if any."""
    return OfferResponse(offer=get_core().arbiter.get_pending_offer())


@router.post("/{offer_id}/accept", response_model=SessionResponse)
async def accept_offer(offer_id: str):
    """Answer the pending offer."""
    core = get_core()

    try:
        session = await core.arbiter.accept(offer_id)
    except InvalidStateError as e:
        pending = core.arbiter.get_pending_offer()
        # 409 while the offer is still shown but already being answered
        raise http_error(e, status_code=409 if pending and pending.offer_id == offer_id else 404)
    except CallError as e:
        raise http_error(e)

    return SessionResponse(state=session.state, session=session)


@router.post("/{offer_id}/reject", response_model=OfferResponse)
async def reject_offer(offer_id: str):
    """Decline the pending offer."""
    core = get_core()

    try:
        await core.arbiter.reject(offer_id)
    except InvalidStateError as e:
        raise http_error(e, status_code=404)

    return OfferResponse(offer=core.arbiter.get_pending_offer())
