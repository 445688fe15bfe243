"""Call control errors."""

from enum import Enum


class CallErrorKind(str, Enum):
    """Category of a call control failure."""
    ALREADY_IN_CALL = "already_in_call"
    TRANSPORT = "transport_error"
    INVALID_STATE = "invalid_state"
    TIMEOUT = "timeout"
    STALE_EVENT = "stale_event"


class CallError(Exception):
    """Call control operation error."""
    kind: CallErrorKind = CallErrorKind.INVALID_STATE


class AlreadyInCallError(CallError):
    """A call is already being placed, answered or in progress."""
    kind = CallErrorKind.ALREADY_IN_CALL


class TransportError(CallError):
    """Signaling round trip failed (network or backend)."""
    kind = CallErrorKind.TRANSPORT


class InvalidStateError(CallError):
    """Operation not valid in the current call state."""
    kind = CallErrorKind.INVALID_STATE


class CallTimeoutError(CallError):
    """Dial, answer or offer window expired."""
    kind = CallErrorKind.TIMEOUT


class StaleEventError(CallError):
    """Status or acknowledgment for a channel that is no longer current."""
    kind = CallErrorKind.STALE_EVENT
