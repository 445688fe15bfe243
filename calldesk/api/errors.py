"""Mapping of call control errors to HTTP responses."""

from fastapi import HTTPException

from ..errors import CallError, CallErrorKind

STATUS_CODES = {
    CallErrorKind.ALREADY_IN_CALL: 409,
    CallErrorKind.INVALID_STATE: 409,
    CallErrorKind.STALE_EVENT: 409,
    CallErrorKind.TIMEOUT: 504,
    CallErrorKind.TRANSPORT: 502,
}


def http_error(error: CallError, status_code: int = None) -> HTTPException:
    """Convert a CallError to an HTTPException carrying its kind."""
    return HTTPException(
        status_code=status_code or STATUS_CODES.get(error.kind, 400),
        detail={"error": error.kind.value, "message": str(error)},
    )
