"""Websocket push feed of call events."""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..core import get_core
from ..models import CallEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["events"])


@router.websocket("/ws")
async def event_feed(websocket: WebSocket):
    """
    Stream session, offer, presence, notice and notification events.

    There is no replay: a client that connects late should read the
    current snapshots from the REST endpoints first.
    """
    bus = get_core().bus

    async def send(event: CallEvent) -> None:
        await websocket.send_json(event.model_dump(mode="json"))

    await websocket.accept()
    subscription = bus.subscribe(send)
    logger.info(f"Event feed client connected ({bus.subscriber_count} total)")
    try:
        while True:
            # Client messages are ignored; receiving detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Event feed client disconnected")
    finally:
        bus.unsubscribe(subscription)
