"""Tests for inbound offer arbitration."""

import asyncio

import pytest

from calldesk.errors import AlreadyInCallError, InvalidStateError, TransportError
from calldesk.models import ArbiterDecision, CallDirection, CallState, DecisionAction
from calldesk.signaling import parse_offer


def make_offer(caller="1002", channel="webrtc-call-77", **extra):
    return parse_offer({"caller": caller, "channel": channel, **extra})


def titles(core):
    return [n.title for n in core.notifications.list_notifications(limit=500)]


@pytest.mark.asyncio
async def test_offer_surfaces_when_idle(core):
    decision = await core.arbiter.on_offer(make_offer(fromUsername="Alice"))

    assert decision.action == DecisionAction.SURFACE
    pending = core.arbiter.get_pending_offer()
    assert pending.from_extension == "1002"
    assert pending.display_name == "Alice"
    assert "Incoming Call" in titles(core)


@pytest.mark.asyncio
async def test_offer_while_connected_is_rejected_busy(core, signaling):
    """Offers arriving during a call never become pending."""
    await core.sessions.start_call("1001")

    decision = await core.arbiter.on_offer(make_offer())

    assert decision.action == DecisionAction.AUTO_REJECT
    assert decision.reason == "busy"
    assert core.arbiter.get_pending_offer() is None
    assert core.sessions.get_current_session().peer_extension == "1001"
    assert "Call Rejected" in titles(core)

    await asyncio.sleep(0.05)
    assert signaling.rejects == ["webrtc-call-77"]


@pytest.mark.asyncio
async def test_second_offer_while_pending(core, signaling):
    await core.arbiter.on_offer(make_offer())

    duplicate = await core.arbiter.on_offer(make_offer())
    other = await core.arbiter.on_offer(make_offer(caller="1005", channel="webrtc-call-78"))

    assert duplicate.action == DecisionAction.SURFACE
    assert other.action == DecisionAction.AUTO_REJECT
    assert core.arbiter.get_pending_offer().offer_id == "webrtc-call-77"

    await asyncio.sleep(0.05)
    assert signaling.rejects == ["webrtc-call-78"]


@pytest.mark.asyncio
async def test_accept_pending_offer(core, signaling):
    """Accepting promotes the offer to a connected inbound call."""
    await core.arbiter.on_offer(make_offer())

    session = await core.arbiter.accept("webrtc-call-77")

    assert session.direction == CallDirection.INBOUND
    assert session.state == CallState.CONNECTED
    assert session.peer_extension == "1002"
    assert session.id == "webrtc-call-77"
    assert core.arbiter.get_pending_offer() is None
    assert signaling.commands("accept") == ["webrtc-call-77"]


@pytest.mark.asyncio
async def test_accept_after_outbound_call_started(core):
    """An outbound call placed while the offer is shown wins."""
    await core.arbiter.on_offer(make_offer())
    await core.sessions.start_call("1001")

    with pytest.raises(AlreadyInCallError):
        await core.arbiter.accept("webrtc-call-77")

    assert core.sessions.get_current_session().direction == CallDirection.OUTBOUND
    assert core.arbiter.get_pending_offer().offer_id == "webrtc-call-77"


@pytest.mark.asyncio
async def test_accept_transport_failure(core, signaling):
    signaling.accept_error = TransportError("Answer rejected by backend")
    await core.arbiter.on_offer(make_offer())

    with pytest.raises(TransportError):
        await core.arbiter.accept("webrtc-call-77")

    assert core.arbiter.get_pending_offer() is None
    assert core.sessions.state == CallState.FAILED


@pytest.mark.asyncio
async def test_accept_unknown_offer(core):
    with pytest.raises(InvalidStateError):
        await core.arbiter.accept("webrtc-call-99")
    assert "Offer Unavailable" in titles(core)


@pytest.mark.asyncio
async def test_reject(core, signaling):
    await core.arbiter.on_offer(make_offer())

    await core.arbiter.reject("webrtc-call-77")

    assert core.arbiter.get_pending_offer() is None
    assert signaling.rejects == ["webrtc-call-77"]
    assert core.sessions.state == CallState.IDLE


@pytest.mark.asyncio
async def test_reject_transport_failure_reported(core, signaling):
    signaling.reject_error = TransportError("Backend down")
    await core.arbiter.on_offer(make_offer())

    await core.arbiter.reject("webrtc-call-77")

    assert core.arbiter.get_pending_offer() is None
    assert "Reject Failed" in titles(core)


@pytest.mark.asyncio
async def test_offer_expires(core, signaling):
    """An unanswered offer is missed and rejected after offer_timeout."""
    await core.arbiter.on_offer(make_offer())

    await asyncio.sleep(0.5)

    assert core.arbiter.get_pending_offer() is None
    assert "Missed Call" in titles(core)
    assert signaling.rejects == ["webrtc-call-77"]


@pytest.mark.asyncio
async def test_caller_gives_up(core, signaling):
    await core.arbiter.on_offer(make_offer())

    consumed = await core.arbiter.on_offer_status("webrtc-call-77", "Call ended")

    assert consumed
    assert core.arbiter.get_pending_offer() is None
    assert "Missed Call" in titles(core)
    assert signaling.rejects == []


@pytest.mark.asyncio
async def test_status_for_other_channel_not_consumed(core):
    await core.arbiter.on_offer(make_offer())

    assert not await core.arbiter.on_offer_status("webrtc-call-1", "Call ended")
    assert not await core.arbiter.on_offer_status(None, "Call ended")
    assert core.arbiter.get_pending_offer() is not None


@pytest.mark.asyncio
async def test_second_accept_while_answering(core, signaling):
    """A repeated accept is refused and does not release the first one's claim."""
    signaling.accept_gate = asyncio.Event()
    await core.arbiter.on_offer(make_offer())
    first = asyncio.create_task(core.arbiter.accept("webrtc-call-77"))
    await asyncio.sleep(0.01)

    with pytest.raises(InvalidStateError):
        await core.arbiter.accept("webrtc-call-77")

    # Past the offer window while the first accept is still in flight
    await asyncio.sleep(0.35)
    signaling.accept_gate.set()
    session = await first

    assert session.state == CallState.CONNECTED
    assert core.arbiter.get_pending_offer() is None
    assert signaling.rejects == []
    assert signaling.commands("accept") == ["webrtc-call-77"]
    assert "Missed Call" not in titles(core)


@pytest.mark.asyncio
async def test_offer_while_dialing_is_rejected_busy(core, signaling):
    signaling.dial_gate = asyncio.Event()
    dialing = asyncio.create_task(core.sessions.start_call("1001"))
    await asyncio.sleep(0.01)
    assert core.sessions.state == CallState.DIALING

    decision = await core.arbiter.on_offer(make_offer())

    assert decision == ArbiterDecision.auto_reject("busy")
    assert core.arbiter.get_pending_offer() is None

    signaling.dial_gate.set()
    await dialing


@pytest.mark.asyncio
async def test_accept_while_dial_in_flight(core, signaling):
    """An offer shown before the dial started can not be answered until the dial settles."""
    await core.arbiter.on_offer(make_offer())
    signaling.dial_gate = asyncio.Event()
    dialing = asyncio.create_task(core.sessions.start_call("1001"))
    await asyncio.sleep(0.01)

    with pytest.raises(AlreadyInCallError):
        await core.arbiter.accept("webrtc-call-77")

    assert core.sessions.state == CallState.DIALING
    assert core.arbiter.get_pending_offer().offer_id == "webrtc-call-77"
    assert signaling.commands("accept") == []

    signaling.dial_gate.set()
    session = await dialing
    assert session.direction == CallDirection.OUTBOUND
