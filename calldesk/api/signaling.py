"""Webhook ingestion of backend signaling events."""

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException

from ..core import get_core
from ..models import SignalingEventResponse
from ..signaling import parse_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/signaling", tags=["signaling"])


@router.post("/events", response_model=SignalingEventResponse, status_code=202)
async def ingest_event(payload: dict[str, Any] = Body(...)):
    """
    Feed one backend event into call control.

    Accepts the same JSON messages the signaling websocket delivers.
    Messages of unknown type are ignored.
    """
    try:
        event = parse_event(payload)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if event is None:
        logger.debug(f"Ignoring webhook event of type {payload.get('type')!r}")
        return SignalingEventResponse(accepted=False)

    decision = await get_core().dispatch(event)
    return SignalingEventResponse(accepted=True, type=event.type.value, decision=decision)
