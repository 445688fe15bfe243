"""Presence heartbeat and call-driven Busy override."""

import asyncio
import logging
from typing import Optional

from .config import Settings, get_settings
from .events import EventBus
from .models import CallSession, CallState, PresenceState, PresenceStatus, utc_now
from .signaling import StatusBackend

logger = logging.getLogger(__name__)


class StatusSynchronizer:
    """
    Pushes the user's presence to the backend.

    All pushes, heartbeat or call-triggered, go through one queue consumed
    by a single worker. Entries carry their issue sequence and the worker
    only sends the newest one it finds, so a push issued later always wins
    over one issued earlier.
    """

    def __init__(
        self,
        backend: StatusBackend,
        bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
    ):
        self._backend = backend
        self._bus = bus
        self._settings = settings or get_settings()
        self._state = PresenceState()
        self._base_status = PresenceStatus.ONLINE
        self._in_call = False
        self._queue: Optional[asyncio.Queue] = None
        self._issued = 0
        self._worker: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None

    @property
    def extension(self) -> Optional[str]:
        return self._state.extension

    def get_presence(self) -> PresenceState:
        return self._state.model_copy()

    def effective_status(self) -> PresenceStatus:
        return PresenceStatus.BUSY if self._in_call else self._base_status

    async def start(self, extension: str) -> None:
        """Go Online for an extension and start the heartbeat."""
        if self.running:
            if self._state.extension == extension:
                return
            await self.stop()

        self._state = PresenceState(extension=extension, status=PresenceStatus.ONLINE)
        self._base_status = PresenceStatus.ONLINE
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run_pushes())
        self._heartbeat = asyncio.create_task(self._run_heartbeat())
        logger.info(f"Presence started for extension {extension}")
        self.push_status(self.effective_status())

    def push_status(self, status: PresenceStatus) -> int:
        """Queue a push and return its issue sequence (0 when not started)."""
        if self._queue is None:
            logger.debug(f"Presence not started, ignoring push of {status.value}")
            return 0
        self._issued += 1
        self._queue.put_nowait((self._issued, status))
        return self._issued

    def set_status(self, status: PresenceStatus) -> None:
        """Change the user's own presence; deferred while a call holds Busy."""
        self._base_status = status
        self.push_status(self.effective_status())

    def on_call_state(self, previous: CallState, session: Optional[CallSession]) -> None:
        """Session manager listener."""
        connected = session is not None and session.state == CallState.CONNECTED
        if connected and not self._in_call:
            self._in_call = True
            self.push_status(PresenceStatus.BUSY)
        elif not connected and self._in_call:
            self._in_call = False
            self.push_status(self._base_status)

    async def flush(self) -> None:
        """Wait until every queued push has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Stop the heartbeat and push Offline once, best effort."""
        if not self.running:
            return

        tasks = [t for t in (self._heartbeat, self._worker) if t]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._heartbeat = None
        self._worker = None
        self._queue = None

        extension = self._state.extension
        try:
            await asyncio.wait_for(
                self._backend.push_status(extension, PresenceStatus.OFFLINE.value),
                timeout=self._settings.status_push_timeout,
            )
        except Exception as e:
            logger.warning(f"Final offline push failed for {extension}: {str(e) or type(e).__name__}")

        self._state = PresenceState()
        self._in_call = False
        logger.info(f"Presence stopped for extension {extension}")
        self._publish()

    # Internals

    async def _run_pushes(self) -> None:
        queue = self._queue
        while True:
            seq, status = await queue.get()
            taken = 1
            while not queue.empty():
                seq, status = queue.get_nowait()
                taken += 1
            try:
                await self._push(seq, status)
            finally:
                for _ in range(taken):
                    queue.task_done()

    async def _push(self, seq: int, status: PresenceStatus) -> None:
        extension = self._state.extension
        try:
            await asyncio.wait_for(
                self._backend.push_status(extension, status.value),
                timeout=self._settings.status_push_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Retried by the next heartbeat tick
            self._state.last_error = str(e) or type(e).__name__
            logger.warning(f"Presence push #{seq} ({status.value}) failed: {self._state.last_error}")
            self._publish()
            return

        self._state.status = status
        self._state.last_pushed_at = utc_now()
        self._state.last_error = None
        logger.debug(f"Presence push #{seq}: {extension} is {status.value}")
        self._publish()

    async def _run_heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._settings.heartbeat_interval)
            self.push_status(self.effective_status())

    def _publish(self) -> None:
        if self._bus:
            self._bus.publish("presence", presence=self._state.model_dump(mode="json"))
