"""Single active call state machine driven by user commands and backend statuses."""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Optional

from .config import Settings, get_settings
from .errors import (
    AlreadyInCallError,
    CallError,
    CallTimeoutError,
    InvalidStateError,
    StaleEventError,
    TransportError,
)
from .events import EventBus
from .models import (
    CallDirection,
    CallSession,
    CallState,
    IncomingCallOffer,
    NotificationKind,
    utc_now,
)
from .notifications import NotificationSink
from .signaling import SignalingClient

logger = logging.getLogger(__name__)

StateListener = Callable[[CallState, Optional[CallSession]], None]


class StatusKind(str, Enum):
    """What a backend status string means for the call."""
    CONNECTED = "connected"
    FAILED = "failed"
    ENDED = "ended"
    PROGRESS = "progress"


CONNECTED_STATUSES = {"connected", "answered", "up", "in call"}
FAILED_STATUSES = {
    "call failed", "failed", "busy", "no answer", "rejected", "congestion", "unavailable",
}
ENDED_STATUSES = {"call ended", "ended", "hangup", "hung up", "completed", "disconnected"}
PROGRESS_PREFIXES = ("ringing", "trying", "progress", "initiating", "connecting", "calling")

NOTICE_KINDS = {
    StatusKind.CONNECTED: NotificationKind.SUCCESS,
    StatusKind.FAILED: NotificationKind.ERROR,
}


def classify_status(status: str) -> Optional[StatusKind]:
    """Map a backend status string to a StatusKind, or None if unrecognized."""
    key = status.strip().lower()
    if key in CONNECTED_STATUSES:
        return StatusKind.CONNECTED
    if key in FAILED_STATUSES:
        return StatusKind.FAILED
    if key in ENDED_STATUSES:
        return StatusKind.ENDED
    if key.startswith(PROGRESS_PREFIXES):
        return StatusKind.PROGRESS
    return None


class CallSessionManager:
    """
    Owns the single active call.

    Every mutation happens under one lock. Signaling round trips run as
    tasks outside the lock and are tagged with the session generation;
    a completion that comes back after the session was ended or replaced
    is dropped instead of being applied.
    """

    def __init__(
        self,
        signaling: SignalingClient,
        notifications: NotificationSink,
        bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
    ):
        self._signaling = signaling
        self._notifications = notifications
        self._bus = bus
        self._settings = settings or get_settings()
        self._lock = asyncio.Lock()
        self._session: Optional[CallSession] = None
        self._snapshot: Optional[CallSession] = None
        self._generation = 0
        self._pending: Optional[asyncio.Task] = None
        self._reset_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()
        self._ended_channels: deque[str] = deque(maxlen=64)
        self._listeners: list[StateListener] = []

    # Snapshots (lock-free)

    @property
    def state(self) -> CallState:
        snapshot = self._snapshot
        return snapshot.state if snapshot else CallState.IDLE

    @property
    def holds_session(self) -> bool:
        """True while any non-Idle session exists, terminal ones included."""
        return self._snapshot is not None

    @property
    def has_active_call(self) -> bool:
        snapshot = self._snapshot
        return snapshot is not None and snapshot.is_active

    def get_current_session(self) -> Optional[CallSession]:
        """Read-only copy of the current session, None when Idle."""
        snapshot = self._snapshot
        return snapshot.model_copy() if snapshot else None

    def add_state_listener(self, listener: StateListener) -> None:
        """Register a synchronous observer called after every change."""
        self._listeners.append(listener)

    # Operations

    async def start_call(self, extension: str, display_name: Optional[str] = None) -> CallSession:
        """
        Place an outbound call and wait for the dial acknowledgment.

        Raises AlreadyInCallError if a call is in progress, TransportError
        if the dial fails and CallTimeoutError if it is not acknowledged
        in time. If the call is ended while dialing, the ended session is
        returned.
        """
        async with self._lock:
            self._ensure_available()
            session = CallSession(
                direction=CallDirection.OUTBOUND,
                peer_extension=extension,
                peer_display_name=display_name,
                state=CallState.DIALING,
                started_at=utc_now(),
            )
            generation = self._claim(session)
            self._notifications.call_initiating(session.display_name)
            pending = self._start_pending(self._signaling.dial(session.peer_extension))

        logger.info(f"Dialing {session.peer_extension}")
        return await self._complete_pending(
            session, generation, pending, self._settings.dial_timeout, "Dial",
        )

    async def accept_offer(self, offer: IncomingCallOffer) -> CallSession:
        """Claim the call slot for an inbound offer and answer it."""
        async with self._lock:
            self._ensure_available()
            session = CallSession(
                id=offer.offered_channel_id,
                direction=CallDirection.INBOUND,
                peer_extension=offer.from_extension,
                peer_display_name=offer.from_display_name,
                state=CallState.RINGING,
                started_at=utc_now(),
            )
            generation = self._claim(session)
            pending = self._start_pending(self._signaling.accept_offer(offer.offer_id))

        logger.info(f"Answering call from {offer.from_extension} (channel {offer.offered_channel_id})")
        return await self._complete_pending(
            session, generation, pending, self._settings.accept_timeout, "Answer",
        )

    async def end_call(self) -> None:
        """
        End the current call.

        Local state is back to Idle before the hangup is sent; a failed
        hangup is reported as a notification and never raised.
        """
        async with self._lock:
            session = self._session
            if session is None or not session.is_active:
                self._raise(InvalidStateError("No active call to end"), "End Call Failed")

            if self._pending and not self._pending.done():
                self._pending.cancel()
            self._pending = None

            channel = session.id or self._settings.hangup_channel_for(session.peer_extension)
            self._transition(CallState.ENDED, ended_at=session.ended_at or utc_now())
            self._remember_channel(session.id)
            self._release()

        if channel is None:
            self._notifications.call_ended(session.display_name, session.duration_seconds)
            return

        logger.info(f"Hanging up {session.peer_extension} (channel {channel})")
        try:
            await asyncio.wait_for(
                self._signaling.hangup(channel),
                timeout=self._settings.hangup_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Hangup timed out for channel {channel}")
            self._notifications.end_call_failed(session.display_name, "hangup timed out")
            return
        except Exception as e:
            logger.warning(f"Hangup failed for channel {channel}: {e}")
            self._notifications.end_call_failed(session.display_name, str(e))
            return

        self._notifications.call_ended(session.display_name, session.duration_seconds)

    async def on_signaling_status(self, status: str, channel_id: Optional[str] = None) -> None:
        """
        Apply a backend status string to the current call.

        A status without a channel id applies to the current call. Statuses
        for any other channel are stale and discarded.
        """
        kind = classify_status(status)

        async with self._lock:
            try:
                self._check_current(channel_id)
            except StaleEventError as e:
                logger.info(f"Discarding status {status!r}: {e}")
                return

            self._publish_notice(kind, status)

            if kind is None:
                self._notifications.info("Call Status", status)
                return

            session = self._session
            if session is None or not session.is_active:
                logger.debug(f"Status {status!r} with no active call")
                return

            if channel_id and session.id is None:
                session.id = channel_id
                self._publish(session.state)

            if kind == StatusKind.CONNECTED:
                self._connect(channel_id)
            elif kind == StatusKind.FAILED:
                self._cancel_pending()
                self._fail(status)
            elif kind == StatusKind.ENDED:
                self._cancel_pending()
                self._end_remote()

    async def close(self) -> None:
        """Cancel timers and in-flight round trips."""
        async with self._lock:
            self._generation += 1
            self._cancel_pending()
            self._cancel_reset()
        for task in list(self._background):
            task.cancel()

    # Internals (call with the lock held)

    def _publish(self, previous: CallState) -> None:
        session = self._session
        if session is None or session.state == CallState.IDLE:
            self._snapshot = None
        else:
            self._snapshot = session.model_copy()

        snapshot = self.get_current_session()
        if self._bus:
            self._bus.publish(
                "session",
                state=self.state.value,
                previous=previous.value,
                session=snapshot.model_dump(mode="json") if snapshot else None,
            )
        for listener in list(self._listeners):
            try:
                listener(previous, snapshot)
            except Exception:
                logger.exception("State listener failed")

    def _publish_notice(self, kind: Optional[StatusKind], message: str) -> None:
        if self._bus:
            notice_kind = NOTICE_KINDS.get(kind, NotificationKind.INFO)
            self._bus.publish("notice", kind=notice_kind.value, message=message)

    def _raise(self, error: CallError, title: str) -> None:
        self._notifications.error(title, str(error))
        raise error

    def _ensure_available(self) -> None:
        session = self._session
        if session is not None and session.is_active:
            self._raise(
                AlreadyInCallError(f"Already in a call with {session.display_name}"),
                "Already In Call",
            )

    def _claim(self, session: CallSession) -> int:
        previous = self.state
        self._cancel_reset()
        self._generation += 1
        self._session = session
        self._publish(previous)
        return self._generation

    def _release(self) -> None:
        previous = self.state
        self._generation += 1
        self._session = None
        self._publish(previous)

    def _transition(self, state: CallState, **changes) -> None:
        previous = self.state
        session = self._session
        session.state = state
        for name, value in changes.items():
            setattr(session, name, value)
        self._publish(previous)
        logger.info(f"Call with {session.peer_extension}: {previous.value} -> {state.value}")

    def _connect(self, channel_id: Optional[str]) -> None:
        session = self._session
        if session.state == CallState.CONNECTED:
            if channel_id and session.id != channel_id:
                session.id = channel_id
                self._publish(CallState.CONNECTED)
            return
        self._transition(
            CallState.CONNECTED,
            id=channel_id or session.id,
            connected_at=session.connected_at or utc_now(),
        )
        self._notifications.call_connected(session.display_name)

    def _fail(self, reason: str) -> None:
        session = self._session
        self._transition(
            CallState.FAILED,
            last_error=reason,
            ended_at=session.ended_at or utc_now(),
        )
        self._remember_channel(session.id)
        self._notifications.call_failed(session.display_name, reason)
        self._schedule_reset()

    def _end_remote(self) -> None:
        session = self._session
        self._transition(CallState.ENDED, ended_at=session.ended_at or utc_now())
        self._remember_channel(session.id)
        self._notifications.call_ended(session.display_name, session.duration_seconds)
        self._schedule_reset()

    def _check_current(self, channel_id: Optional[str]) -> None:
        if channel_id is None:
            return
        if channel_id in self._ended_channels:
            raise StaleEventError(f"channel {channel_id} already ended")
        session = self._session
        if session is None or not session.is_active:
            raise StaleEventError(f"no active call for channel {channel_id}")
        if session.id is not None and session.id != channel_id:
            raise StaleEventError(f"channel {channel_id} is not the current call ({session.id})")

    def _remember_channel(self, channel_id: Optional[str]) -> None:
        if channel_id and channel_id not in self._ended_channels:
            self._ended_channels.append(channel_id)

    def _start_pending(self, coro: Awaitable[str]) -> asyncio.Task:
        self._pending = asyncio.ensure_future(coro)
        return self._pending

    def _cancel_pending(self) -> None:
        if self._pending and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    def _schedule_reset(self) -> None:
        self._cancel_reset()
        self._reset_task = asyncio.create_task(
            self._reset_after(self._generation, self._settings.terminal_grace_period)
        )

    def _cancel_reset(self) -> None:
        if self._reset_task and not self._reset_task.done():
            self._reset_task.cancel()
        self._reset_task = None

    async def _reset_after(self, generation: int, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._lock:
            session = self._session
            if generation != self._generation or session is None or not session.is_terminal:
                return
            logger.debug(f"Grace period over for call with {session.peer_extension}")
            self._reset_task = None
            self._release()

    # Round trip completion

    async def _complete_pending(
        self,
        session: CallSession,
        generation: int,
        pending: asyncio.Task,
        timeout: float,
        operation: str,
    ) -> CallSession:
        done, _ = await asyncio.wait({pending}, timeout=timeout)

        async with self._lock:
            if self._pending is pending:
                self._pending = None

            if generation != self._generation:
                self._drop_late_ack(pending)
                return session.model_copy()

            if session.state == CallState.FAILED:
                self._consume(pending)
                raise TransportError(session.last_error or f"{operation} failed")
            if session.state == CallState.ENDED:
                self._consume(pending)
                return session.model_copy()

            if not done:
                pending.cancel()
                if session.state == CallState.CONNECTED:
                    return session.model_copy()
                error = CallTimeoutError(f"{operation} timed out after {timeout:g}s")
                self._fail(str(error))
                raise error

            exc = self._consume(pending)
            if exc is not None:
                if session.state == CallState.CONNECTED:
                    logger.warning(f"{operation} acknowledgment failed after connect: {exc}")
                    return session.model_copy()
                error = exc if isinstance(exc, TransportError) else TransportError(f"{operation} failed: {exc}")
                self._fail(str(error))
                if error is exc:
                    raise error
                raise error from exc

            self._connect(pending.result())
            return session.model_copy()

    @staticmethod
    def _consume(pending: asyncio.Task) -> Optional[BaseException]:
        """Retrieve a finished task's exception so it is never left unobserved."""
        if not pending.done() or pending.cancelled():
            return None
        return pending.exception()

    def _drop_late_ack(self, pending: asyncio.Task) -> None:
        if not pending.done():
            pending.cancel()
            return
        if self._consume(pending) is not None or pending.cancelled():
            return
        channel = pending.result()
        if not channel:
            return
        logger.info(f"Dropping late acknowledgment for channel {channel}")
        self._remember_channel(channel)
        self._spawn(self._hangup_orphan(channel))

    async def _hangup_orphan(self, channel: str) -> None:
        try:
            await asyncio.wait_for(
                self._signaling.hangup(channel),
                timeout=self._settings.hangup_timeout,
            )
            logger.info(f"Hung up orphaned channel {channel}")
        except Exception as e:
            logger.warning(f"Failed to hang up orphaned channel {channel}: {e}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
