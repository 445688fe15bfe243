"""Wiring of the call control components and the signaling event pump."""

import asyncio
import logging
from typing import Optional

from .arbiter import IncomingCallArbiter
from .config import Settings, get_settings
from .errors import InvalidStateError
from .events import EventBus
from .models import ArbiterDecision
from .notifications import NotificationSink
from .presence import StatusSynchronizer
from .session_manager import CallSessionManager
from .signaling import (
    HttpSignalingClient,
    HttpStatusBackend,
    SignalingClient,
    SignalingEvent,
    SignalingEventType,
    StatusBackend,
)

logger = logging.getLogger(__name__)


class CallCore:
    """Owns one instance of each component for the logged-in user."""

    def __init__(
        self,
        signaling: SignalingClient,
        status_backend: StatusBackend,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.signaling = signaling
        self.status_backend = status_backend
        self.bus = EventBus(queue_size=self.settings.subscriber_queue_size)
        self.notifications = NotificationSink(self.bus, self.settings.max_notifications)
        self.sessions = CallSessionManager(signaling, self.notifications, self.bus, self.settings)
        self.arbiter = IncomingCallArbiter(
            self.sessions, signaling, self.notifications, self.bus, self.settings,
        )
        self.presence = StatusSynchronizer(status_backend, self.bus, self.settings)
        self.sessions.add_state_listener(self.presence.on_call_state)
        self._extension: Optional[str] = None
        self._pump: Optional[asyncio.Task] = None

    @property
    def extension(self) -> Optional[str]:
        return self._extension

    @property
    def listening(self) -> bool:
        return self._pump is not None and not self._pump.done()

    async def login(self, extension: str) -> None:
        """Start presence and the inbound event stream for an extension."""
        if self._extension == extension and self.listening:
            return
        if self._extension is not None:
            await self.logout()

        self._extension = extension
        await self.presence.start(extension)
        self._pump = asyncio.create_task(self._run_pump(extension))
        logger.info(f"Logged in as extension {extension}")

    async def logout(self) -> None:
        """End any call, reject a pending offer, stop listening and go Offline."""
        if self.sessions.has_active_call:
            try:
                await self.sessions.end_call()
            except InvalidStateError:
                logger.debug("Call already ended during logout")

        offer = self.arbiter.get_pending_offer()
        if offer is not None:
            try:
                await self.arbiter.reject(offer.offer_id)
            except InvalidStateError:
                logger.debug("Offer already resolved during logout")

        await self._stop_pump()
        await self.presence.stop()
        if self._extension is not None:
            logger.info(f"Logged out extension {self._extension}")
        self._extension = None

    async def dispatch(self, event: SignalingEvent) -> Optional[ArbiterDecision]:
        """Route one normalized signaling event."""
        if event.type == SignalingEventType.OFFER:
            decision = await self.arbiter.on_offer(event.offer)
            logger.debug(f"Offer {event.channel_id}: {decision.action.value}")
            return decision

        if await self.arbiter.on_offer_status(event.channel_id, event.status):
            return None
        await self.sessions.on_signaling_status(event.status, event.channel_id)
        return None

    async def stop(self) -> None:
        """Shut everything down."""
        await self.logout()
        await self.arbiter.close()
        await self.sessions.close()
        await self.signaling.close()
        await self.status_backend.close()
        self.bus.close()

    def health(self) -> dict:
        offer = self.arbiter.get_pending_offer()
        presence = self.presence.get_presence()
        return {
            "extension": self._extension,
            "signaling_connected": self.signaling.connected,
            "listening": self.listening,
            "call_state": self.sessions.state.value,
            "pending_offer": offer.offer_id if offer else None,
            "presence": presence.status.value,
            "presence_error": presence.last_error,
            "subscribers": self.bus.subscriber_count,
        }

    async def _run_pump(self, extension: str) -> None:
        try:
            async for event in self.signaling.events(extension):
                try:
                    await self.dispatch(event)
                except Exception:
                    logger.exception(f"Failed to handle {event.type.value} event")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Signaling event stream failed")

    async def _stop_pump(self) -> None:
        if self._pump is None:
            return
        self._pump.cancel()
        await asyncio.gather(self._pump, return_exceptions=True)
        self._pump = None


# Global core instance
_core: Optional[CallCore] = None


def get_core() -> CallCore:
    """Get call core instance."""
    global _core
    if _core is None:
        settings = get_settings()
        _core = CallCore(
            signaling=HttpSignalingClient(
                base_url=settings.backend_url,
                ws_url=settings.get_ws_url(),
                token=settings.api_token,
                request_timeout=settings.request_timeout,
                reconnect_interval=settings.reconnect_interval,
            ),
            status_backend=HttpStatusBackend(
                base_url=settings.backend_url,
                token=settings.api_token,
                request_timeout=settings.request_timeout,
            ),
            settings=settings,
        )
    return _core
