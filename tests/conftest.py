"""Shared fixtures and in-process fakes of the signaling backend."""

import asyncio
from typing import Optional

import pytest
import pytest_asyncio

from calldesk.config import Settings
from calldesk.core import CallCore
from calldesk.signaling import SignalingClient, SignalingEvent, StatusBackend


class FakeSignalingClient(SignalingClient):
    """Records commands; results, failures and delays are set per test."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.dial_result = "webrtc-call-42"
        self.dial_error: Optional[Exception] = None
        self.dial_gate: Optional[asyncio.Event] = None
        self.accept_result: Optional[str] = None
        self.accept_gate: Optional[asyncio.Event] = None
        self.accept_error: Optional[Exception] = None
        self.hangup_error: Optional[Exception] = None
        self.reject_error: Optional[Exception] = None
        self.streaming = False
        self.closed = False
        self._queue: Optional[asyncio.Queue] = None

    def commands(self, name: str) -> list[str]:
        return [arg for method, arg in self.calls if method == name]

    @property
    def hangups(self) -> list[str]:
        return self.commands("hangup")

    @property
    def rejects(self) -> list[str]:
        return self.commands("reject")

    async def dial(self, extension: str) -> str:
        self.calls.append(("dial", extension))
        if self.dial_gate is not None:
            await self.dial_gate.wait()
        if self.dial_error is not None:
            raise self.dial_error
        return self.dial_result

    async def hangup(self, channel_id: str) -> None:
        self.calls.append(("hangup", channel_id))
        if self.hangup_error is not None:
            raise self.hangup_error

    async def accept_offer(self, offer_id: str) -> str:
        self.calls.append(("accept", offer_id))
        if self.accept_gate is not None:
            await self.accept_gate.wait()
        if self.accept_error is not None:
            raise self.accept_error
        return self.accept_result or offer_id

    async def reject_offer(self, offer_id: str) -> None:
        self.calls.append(("reject", offer_id))
        if self.reject_error is not None:
            raise self.reject_error

    def emit(self, event: SignalingEvent) -> None:
        """Deliver an event on the stream."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._queue.put_nowait(event)

    async def events(self, extension: str):
        self.calls.append(("events", extension))
        if self._queue is None:
            self._queue = asyncio.Queue()
        self.streaming = True
        try:
            while True:
                yield await self._queue.get()
        finally:
            self.streaming = False

    @property
    def connected(self) -> bool:
        return self.streaming

    async def close(self) -> None:
        self.closed = True


class FakeStatusBackend(StatusBackend):
    """Records presence pushes."""

    def __init__(self):
        self.pushes: list[tuple[str, str]] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    @property
    def statuses(self) -> list[str]:
        return [status for _, status in self.pushes]

    async def push_status(self, extension: str, status: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.pushes.append((extension, status))

    async def close(self) -> None:
        pass


@pytest.fixture
def settings():
    """Settings with short timers."""
    return Settings(
        dial_timeout=0.5,
        accept_timeout=0.5,
        hangup_timeout=0.2,
        terminal_grace_period=0.05,
        offer_timeout=0.3,
        heartbeat_interval=60,
        status_push_timeout=0.2,
        extension=None,
    )


@pytest.fixture
def signaling():
    return FakeSignalingClient()


@pytest.fixture
def status_backend():
    return FakeStatusBackend()


@pytest_asyncio.fixture
async def core(signaling, status_backend, settings):
    """Call core wired to the fakes, shut down after the test."""
    core = CallCore(signaling, status_backend, settings)
    yield core
    await core.stop()
