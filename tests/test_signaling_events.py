"""Tests for signaling payload normalization."""

import json

import pytest

from calldesk.signaling import SignalingEventType, parse_event, parse_offer


def test_parse_offer_primary_keys():
    offer = parse_offer({
        "caller": "1002",
        "fromUsername": "Alice",
        "channel": "webrtc-call-77",
    })
    assert offer.from_extension == "1002"
    assert offer.from_display_name == "Alice"
    assert offer.offered_channel_id == "webrtc-call-77"
    assert offer.offer_id == "webrtc-call-77"


def test_parse_offer_alias_precedence():
    """First non-empty alias wins."""
    offer = parse_offer({
        "caller": "",
        "from": "1003",
        "from_extension": "1004",
        "channel": None,
        "callId": "abc",
        "call_id": "def",
    })
    assert offer.from_extension == "1003"
    assert offer.offered_channel_id == "abc"


def test_parse_offer_defaults():
    offer = parse_offer({"from": 1005, "callId": "abc"})
    assert offer.from_extension == "1005"
    assert offer.from_display_name is None
    assert offer.display_name == "Extension 1005"
    assert offer.priority == "normal"
    assert offer.transport == "transport-ws"


def test_parse_offer_missing_fields():
    with pytest.raises(ValueError):
        parse_offer({"channel": "abc"})
    with pytest.raises(ValueError):
        parse_offer({"caller": "1002", "channel": "  "})


def test_parse_offer_event_from_json():
    raw = json.dumps({"type": "incoming_call", "caller": "1002", "callId": "webrtc-call-77"})
    event = parse_event(raw)
    assert event.type == SignalingEventType.OFFER
    assert event.channel_id == "webrtc-call-77"
    assert event.offer.from_extension == "1002"


def test_parse_status_event():
    event = parse_event({"type": "call-status", "message": "Call ended", "call_id": "c1"})
    assert event.type == SignalingEventType.STATUS
    assert event.status == "Call ended"
    assert event.channel_id == "c1"


def test_parse_status_event_without_channel():
    event = parse_event({"type": "status", "status": "Connected"})
    assert event.channel_id is None


def test_unknown_type_ignored():
    assert parse_event({"type": "keepalive"}) is None
    assert parse_event({}) is None


def test_malformed_events():
    with pytest.raises(ValueError):
        parse_event({"type": "status"})
    with pytest.raises(ValueError):
        parse_event({"type": "offer", "caller": "1002"})
    with pytest.raises(ValueError):
        parse_event("[1, 2]")
    with pytest.raises(ValueError):
        parse_event("not json")
