"""Tests for event routing, login and logout."""

import asyncio

import pytest

from calldesk.models import CallState, DecisionAction, PresenceStatus
from calldesk.signaling import parse_event


def offer_event(caller="1002", channel="webrtc-call-77"):
    return parse_event({"type": "offer", "caller": caller, "channel": channel})


def status_event(status, channel=None):
    payload = {"type": "status", "status": status}
    if channel:
        payload["channel"] = channel
    return parse_event(payload)


@pytest.mark.asyncio
async def test_dispatch_offer(core):
    decision = await core.dispatch(offer_event())

    assert decision.action == DecisionAction.SURFACE
    assert core.arbiter.get_pending_offer().from_extension == "1002"


@pytest.mark.asyncio
async def test_dispatch_status_to_pending_offer(core):
    """A hangup on the offered channel clears the offer, not the session."""
    await core.dispatch(offer_event())

    await core.dispatch(status_event("Call ended", "webrtc-call-77"))

    assert core.arbiter.get_pending_offer() is None
    assert core.sessions.state == CallState.IDLE


@pytest.mark.asyncio
async def test_dispatch_status_to_session(core):
    await core.sessions.start_call("1001")

    await core.dispatch(status_event("Call ended", "webrtc-call-42"))

    assert core.sessions.state == CallState.ENDED


@pytest.mark.asyncio
async def test_login_pumps_events(core, signaling, status_backend):
    await core.login("1001")
    await core.presence.flush()

    assert core.extension == "1001"
    assert core.listening
    assert status_backend.pushes == [("1001", "online")]

    signaling.emit(offer_event())
    await asyncio.sleep(0.05)

    assert core.arbiter.get_pending_offer().offer_id == "webrtc-call-77"
    assert signaling.commands("events") == ["1001"]


@pytest.mark.asyncio
async def test_pump_survives_handler_failure(core, signaling, monkeypatch):
    await core.login("1001")

    async def broken(offer):
        raise RuntimeError("handler bug")

    monkeypatch.setattr(core.arbiter, "on_offer", broken)
    signaling.emit(offer_event())
    await asyncio.sleep(0.05)

    assert core.listening


@pytest.mark.asyncio
async def test_logout_cleans_up(core, signaling, status_backend):
    """Logout ends the call, rejects the offer and goes Offline."""
    await core.login("1001")
    signaling.emit(offer_event())
    await asyncio.sleep(0.05)
    await core.sessions.start_call("1003")
    assert core.arbiter.get_pending_offer() is not None

    await core.logout()

    assert core.sessions.state == CallState.IDLE
    assert signaling.hangups == ["webrtc-call-42"]
    assert "webrtc-call-77" in signaling.rejects
    assert core.presence.get_presence().status == PresenceStatus.OFFLINE
    assert status_backend.pushes[-1] == ("1001", "offline")
    assert core.extension is None
    assert not core.listening


@pytest.mark.asyncio
async def test_health(core):
    await core.sessions.start_call("1001")

    health = core.health()

    assert health["call_state"] == "connected"
    assert health["pending_offer"] is None
    assert health["presence"] == "offline"
