"""Pydantic models for call sessions, offers, presence and notifications."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, computed_field, field_validator


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def extension_label(extension: str, display_name: Optional[str] = None) -> str:
    """Human label for a party, falling back to its extension."""
    return display_name or f"Extension {extension}"


class CallDirection(str, Enum):
    """Who placed the call."""
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class CallState(str, Enum):
    """Lifecycle state of the active call."""
    IDLE = "idle"
    DIALING = "dialing"
    RINGING = "ringing"
    CONNECTED = "connected"
    FAILED = "failed"
    ENDED = "ended"


# A session in one of these states owns the single call slot
ACTIVE_STATES = frozenset({CallState.DIALING, CallState.RINGING, CallState.CONNECTED})
TERMINAL_STATES = frozenset({CallState.FAILED, CallState.ENDED})


class CallSession(BaseModel):
    """The call the user is currently engaged in or attempting."""

    id: Optional[str] = Field(None, description="Backend channel/session id")
    direction: CallDirection
    peer_extension: str = Field(..., min_length=1, description="Remote party extension")
    peer_display_name: Optional[str] = Field(None, description="Remote party label")
    state: CallState = CallState.IDLE
    started_at: Optional[datetime] = None
    connected_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    last_error: Optional[str] = Field(None, description="Failure reason")

    @field_validator('peer_extension')
    @classmethod
    def strip_extension(cls, v):
        """Reject blank extensions."""
        v = v.strip()
        if not v:
            raise ValueError('Extension must not be blank')
        return v

    @computed_field
    @property
    def display_name(self) -> str:
        return extension_label(self.peer_extension, self.peer_display_name)

    @computed_field
    @property
    def duration_seconds(self) -> Optional[float]:
        if self.connected_at is None or self.ended_at is None:
            return None
        return max((self.ended_at - self.connected_at).total_seconds(), 0.0)

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class IncomingCallOffer(BaseModel):
    """Inbound call proposal awaiting accept or reject."""

    from_extension: str = Field(..., min_length=1)
    from_display_name: Optional[str] = None
    offered_channel_id: str = Field(..., min_length=1)
    priority: str = "normal"
    transport: str = "transport-ws"
    received_at: datetime = Field(default_factory=utc_now)

    @computed_field
    @property
    def offer_id(self) -> str:
        return self.offered_channel_id

    @computed_field
    @property
    def display_name(self) -> str:
        return extension_label(self.from_extension, self.from_display_name)


class DecisionAction(str, Enum):
    SURFACE = "surface"
    AUTO_REJECT = "auto_reject"


class ArbiterDecision(BaseModel):
    """Outcome of evaluating an inbound offer."""

    action: DecisionAction
    reason: Optional[str] = None

    @classmethod
    def surface(cls) -> "ArbiterDecision":
        return cls(action=DecisionAction.SURFACE)

    @classmethod
    def auto_reject(cls, reason: str) -> "ArbiterDecision":
        return cls(action=DecisionAction.AUTO_REJECT, reason=reason)


class PresenceStatus(str, Enum):
    """Published availability."""
    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"


class PresenceState(BaseModel):
    """Process-wide presence as last pushed to the backend."""

    extension: Optional[str] = None
    status: PresenceStatus = PresenceStatus.OFFLINE
    last_pushed_at: Optional[datetime] = None
    last_error: Optional[str] = None


class NotificationKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class NotificationEvent(BaseModel):
    """User-visible call event."""

    id: UUID = Field(default_factory=uuid4)
    kind: NotificationKind
    title: str
    body: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    read: bool = False


class CallEvent(BaseModel):
    """Envelope pushed to event feed subscribers."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


# API request/response models


class StartCallRequest(BaseModel):
    """Request to place an outbound call."""

    extension: str = Field(..., min_length=1, max_length=64, description="Extension to dial")
    display_name: Optional[str] = Field(None, max_length=100, description="Label for the callee")


class SessionResponse(BaseModel):
    """Current call state for presentation."""

    state: CallState
    session: Optional[CallSession] = None


class OfferResponse(BaseModel):
    """Pending inbound offer, if any."""

    offer: Optional[IncomingCallOffer] = None


class NotificationListResponse(BaseModel):
    """Response model for listing notifications."""

    notifications: list[NotificationEvent]
    count: int
    unread_count: int


class PresenceStartRequest(BaseModel):
    extension: str = Field(..., min_length=1, max_length=64)


class PresenceUpdateRequest(BaseModel):
    status: PresenceStatus


class SignalingEventResponse(BaseModel):
    """Outcome of an ingested backend event."""

    accepted: bool
    type: Optional[str] = None
    decision: Optional[ArbiterDecision] = None
