"""Inbound call offer arbitration."""

import asyncio
import logging
from typing import Optional

from .config import Settings, get_settings
from .errors import AlreadyInCallError, CallTimeoutError, InvalidStateError, TransportError
from .events import EventBus
from .models import (
    ArbiterDecision,
    CallSession,
    DecisionAction,
    IncomingCallOffer,
    NotificationKind,
)
from .notifications import NotificationSink
from .session_manager import CallSessionManager, StatusKind, classify_status
from .signaling import SignalingClient

logger = logging.getLogger(__name__)


class IncomingCallArbiter:
    """
    Decides whether inbound offers reach the user.

    At most one offer is pending at a time. Accepting goes through the
    session manager, which re-checks that no call was started meanwhile.
    """

    def __init__(
        self,
        sessions: CallSessionManager,
        signaling: SignalingClient,
        notifications: NotificationSink,
        bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
    ):
        self._sessions = sessions
        self._signaling = signaling
        self._notifications = notifications
        self._bus = bus
        self._settings = settings or get_settings()
        self._lock = asyncio.Lock()
        self._pending: Optional[IncomingCallOffer] = None
        self._accepting: Optional[IncomingCallOffer] = None
        self._timer: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

    def get_pending_offer(self) -> Optional[IncomingCallOffer]:
        pending = self._pending
        return pending.model_copy() if pending else None

    async def on_offer(self, offer: IncomingCallOffer) -> ArbiterDecision:
        """Surface an offer to the user, or reject it when the line is busy."""
        async with self._lock:
            pending = self._pending
            if pending and pending.offer_id == offer.offer_id:
                logger.debug(f"Duplicate offer for channel {offer.offer_id}")
                return ArbiterDecision.surface()

            if self._sessions.holds_session or pending is not None:
                decision = ArbiterDecision.auto_reject("busy")
            else:
                self._set_pending(offer)
                self._timer = asyncio.create_task(
                    self._expire_after(offer, self._settings.offer_timeout)
                )
                decision = ArbiterDecision.surface()

        if decision.action == DecisionAction.AUTO_REJECT:
            logger.info(f"Auto-rejecting offer from {offer.from_extension}: busy")
            self._notifications.call_rejected_busy(offer.display_name)
            self._spawn(self._send_reject(offer, notify_failure=False))
        else:
            logger.info(f"Incoming call from {offer.from_extension} (channel {offer.offer_id})")
            self._notifications.incoming_call(offer.display_name)
            if self._bus:
                self._bus.publish(
                    "notice",
                    kind=NotificationKind.INFO.value,
                    message=f"{offer.display_name} is calling",
                )
        return decision

    async def accept(self, offer_id: str) -> CallSession:
        """
        Accept the pending offer.

        Raises InvalidStateError if no such offer is pending or it is
        already being answered, and AlreadyInCallError if a call was
        started while it was displayed; in that case the offer stays
        pending.
        """
        async with self._lock:
            offer = self._require_pending(offer_id)
            if self._accepting is offer:
                error = InvalidStateError(f"Offer {offer_id} is already being answered")
                self._notifications.error("Offer Unavailable", str(error))
                raise error
            self._accepting = offer

        try:
            session = await self._sessions.accept_offer(offer)
        except AlreadyInCallError:
            async with self._lock:
                # The window may have run out while the accept was in flight
                if self._pending is offer and (self._timer is None or self._timer.done()):
                    self._timer = asyncio.create_task(self._expire_after(offer, 0))
            raise
        except (TransportError, CallTimeoutError):
            await self._clear_if_current(offer)
            raise
        finally:
            if self._accepting is offer:
                self._accepting = None

        await self._clear_if_current(offer)
        return session

    async def reject(self, offer_id: str) -> None:
        """Reject the pending offer. The offer is cleared even if the backend call fails."""
        async with self._lock:
            offer = self._require_pending(offer_id)
            self._clear_pending()

        logger.info(f"Rejecting offer from {offer.from_extension}")
        await self._send_reject(offer, notify_failure=True)

    async def on_offer_status(self, channel_id: Optional[str], status: str) -> bool:
        """
        Handle a status addressed to the pending offer's channel.

        Returns True when the status was consumed here.
        """
        if channel_id is None:
            return False
        async with self._lock:
            offer = self._pending
            if offer is None or offer.offer_id != channel_id or self._accepting is offer:
                return False
            if classify_status(status) not in (StatusKind.ENDED, StatusKind.FAILED):
                logger.debug(f"Status {status!r} for pending offer {channel_id}")
                return True
            self._clear_pending()

        logger.info(f"Caller {offer.from_extension} gave up before answer ({status})")
        self._notifications.missed_call(offer.display_name)
        return True

    async def close(self) -> None:
        async with self._lock:
            self._clear_pending()
        for task in list(self._background):
            task.cancel()

    # Internals

    def _require_pending(self, offer_id: str) -> IncomingCallOffer:
        offer = self._pending
        if offer is None or offer.offer_id != offer_id:
            error = InvalidStateError(f"No pending offer {offer_id}")
            self._notifications.error("Offer Unavailable", str(error))
            raise error
        return offer

    def _set_pending(self, offer: Optional[IncomingCallOffer]) -> None:
        self._pending = offer
        if self._bus:
            self._bus.publish(
                "offer",
                offer=offer.model_dump(mode="json") if offer else None,
            )

    def _clear_pending(self) -> None:
        if self._timer and not self._timer.done() and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None
        if self._pending is not None:
            self._set_pending(None)

    async def _clear_if_current(self, offer: IncomingCallOffer) -> None:
        async with self._lock:
            if self._pending is offer:
                self._clear_pending()

    async def _expire_after(self, offer: IncomingCallOffer, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._lock:
            if self._pending is not offer or self._accepting is offer:
                return
            self._clear_pending()

        logger.info(
            f"Offer from {offer.from_extension} not answered within "
            f"{self._settings.offer_timeout:g}s"
        )
        self._notifications.missed_call(offer.display_name)
        await self._send_reject(offer, notify_failure=False)

    async def _send_reject(self, offer: IncomingCallOffer, notify_failure: bool) -> None:
        try:
            await asyncio.wait_for(
                self._signaling.reject_offer(offer.offer_id),
                timeout=self._settings.hangup_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Reject timed out for offer {offer.offer_id}")
            if notify_failure:
                self._notifications.error("Reject Failed", f"Rejecting {offer.display_name} timed out")
        except Exception as e:
            logger.warning(f"Reject failed for offer {offer.offer_id}: {e}")
            if notify_failure:
                self._notifications.error("Reject Failed", f"Failed to reject {offer.display_name}: {e}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
