"""Signaling backend contract and implementation."""

from .client import SignalingClient, StatusBackend, HttpSignalingClient, HttpStatusBackend
from .events import SignalingEvent, SignalingEventType, parse_event, parse_offer

__all__ = [
    "SignalingClient",
    "StatusBackend",
    "HttpSignalingClient",
    "HttpStatusBackend",
    "SignalingEvent",
    "SignalingEventType",
    "parse_event",
    "parse_offer",
]
