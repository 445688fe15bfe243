"""Normalization of inbound signaling payloads.

The backend is loose about field names: the same value may arrive as
``caller`` or ``from``, ``channel`` or ``callId``. Every payload passes
through this module once, and the rest of the code only sees
``SignalingEvent`` and ``IncomingCallOffer``.

Alias precedence is fixed; the first non-empty field wins:

    from extension:  caller, from, from_extension
    display name:    fromUsername, caller_username, from_display_name
    channel:         channel, callId, call_id
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..models import IncomingCallOffer, utc_now

logger = logging.getLogger(__name__)

FROM_KEYS = ("caller", "from", "from_extension")
DISPLAY_NAME_KEYS = ("fromUsername", "caller_username", "from_display_name")
CHANNEL_KEYS = ("channel", "callId", "call_id")
STATUS_KEYS = ("status", "message", "state")

OFFER_TYPES = {"offer", "incoming_call", "incoming-call", "call_offer"}
STATUS_TYPES = {"status", "call_status", "call-status"}


class SignalingEventType(str, Enum):
    OFFER = "offer"
    STATUS = "status"


@dataclass
class SignalingEvent:
    """One normalized event from the signaling backend."""
    type: SignalingEventType
    channel_id: Optional[str] = None
    status: Optional[str] = None
    offer: Optional[IncomingCallOffer] = None
    raw: dict = field(default_factory=dict)


def first_present(payload: dict, keys: tuple[str, ...]) -> Optional[str]:
    """Return the first non-empty value among keys, as a string."""
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def parse_offer(payload: dict, received_at: Optional[datetime] = None) -> IncomingCallOffer:
    """Build an IncomingCallOffer from a raw inbound-call payload."""
    from_extension = first_present(payload, FROM_KEYS)
    if not from_extension:
        raise ValueError("Offer has no caller extension")

    channel = first_present(payload, CHANNEL_KEYS)
    if not channel:
        raise ValueError("Offer has no channel id")

    return IncomingCallOffer(
        from_extension=from_extension,
        from_display_name=first_present(payload, DISPLAY_NAME_KEYS),
        offered_channel_id=channel,
        priority=first_present(payload, ("priority",)) or "normal",
        transport=first_present(payload, ("transport",)) or "transport-ws",
        received_at=received_at or utc_now(),
    )


def parse_event(payload: Any) -> Optional[SignalingEvent]:
    """
    Parse a backend message into a SignalingEvent.

    Accepts a dict or a JSON string. Returns None for messages that are not
    call events (keepalives, unknown types); raises ValueError for call
    events that are malformed.
    """
    if isinstance(payload, (str, bytes)):
        payload = json.loads(payload)
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected signaling payload: {type(payload).__name__}")

    event_type = str(payload.get("type", "")).strip().lower()

    if event_type in OFFER_TYPES:
        offer = parse_offer(payload)
        return SignalingEvent(
            type=SignalingEventType.OFFER,
            channel_id=offer.offered_channel_id,
            offer=offer,
            raw=payload,
        )

    if event_type in STATUS_TYPES:
        status = first_present(payload, STATUS_KEYS)
        if not status:
            raise ValueError("Status event has no status")
        return SignalingEvent(
            type=SignalingEventType.STATUS,
            channel_id=first_present(payload, CHANNEL_KEYS),
            status=status,
            raw=payload,
        )

    logger.debug(f"Ignoring signaling message of type {event_type!r}")
    return None
