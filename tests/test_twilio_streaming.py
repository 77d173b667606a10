from __future__ import annotations

import asyncio

import pytest

from fakes import FakeTwilioSocket
from integrations.twilio_streaming import (
    TelephonyLinkState,
    TwilioMediaLink,
    parse_twilio_ws_message,
    to_telephony_event,
)
from relay.errors import DecodeError


def _run(coro):
    return asyncio.run(coro)


async def _collect(link: TwilioMediaLink) -> list:
    return [event async for event in link.events()]


def test_parse_rejects_malformed_frames():
    assert parse_twilio_ws_message('{"event": "connected"}') == {"event": "connected"}
    with pytest.raises(DecodeError):
        parse_twilio_ws_message("not json")
    with pytest.raises(DecodeError):
        parse_twilio_ws_message('"media"')


def test_to_telephony_event_maps_twilio_events():
    start = to_telephony_event({"event": "start", "start": {"streamSid": "MZ123"}})
    media = to_telephony_event({"event": "media", "media": {"track": "inbound", "payload": "AAEC"}})
    outbound = to_telephony_event({"event": "media", "media": {"track": "outbound", "payload": "AAEC"}})
    missing = to_telephony_event({"event": "media", "media": {}})

    assert (start.kind, start.stream_sid) == ("start", "MZ123")
    assert (media.kind, media.payload) == ("media", "AAEC")
    assert outbound.kind == "other"
    assert missing.kind == "error" and isinstance(missing.error, DecodeError)
    assert to_telephony_event({"event": "stop"}).kind == "stop"
    assert to_telephony_event({"event": "connected"}).kind == "other"


def test_malformed_frame_is_reported_and_stream_continues():
    async def scenario():
        socket = FakeTwilioSocket()
        link = TwilioMediaLink(socket)
        socket.push("garbage")
        socket.push({"event": "start", "start": {"streamSid": "MZ123"}})
        socket.push({"event": "media", "media": {"payload": "AAEC"}})
        socket.push({"event": "stop"})
        return link, await asyncio.wait_for(_collect(link), 1.0)

    link, events = _run(scenario())
    assert [event.kind for event in events] == ["error", "start", "media", "stop"]
    assert isinstance(events[0].error, DecodeError)
    assert link.stream_sid == "MZ123"
    assert link.state is TelephonyLinkState.CLOSED


def test_audio_before_start_is_buffered_then_framed_with_stream_sid():
    async def scenario():
        socket = FakeTwilioSocket()
        link = TwilioMediaLink(socket)
        await link.send_audio("AAAA")
        await link.send_audio("BBBB")
        sent_before_start = list(socket.sent)

        socket.push({"event": "start", "start": {"streamSid": "MZ123"}})
        socket.hang_up()
        events = await asyncio.wait_for(_collect(link), 1.0)
        return socket, sent_before_start, events

    socket, sent_before_start, events = _run(scenario())
    assert sent_before_start == []
    assert [event.kind for event in events] == ["start"]
    assert socket.sent == [
        {"event": "media", "streamSid": "MZ123", "media": {"payload": "AAAA"}},
        {"event": "media", "streamSid": "MZ123", "media": {"payload": "BBBB"}},
    ]


def test_send_after_close_is_dropped():
    async def scenario():
        socket = FakeTwilioSocket()
        link = TwilioMediaLink(socket)
        socket.push({"event": "start", "start": {"streamSid": "MZ123"}})
        socket.hang_up()
        await _collect(link)
        sent = await link.send_audio("AAAA")
        return socket, sent

    socket, sent = _run(scenario())
    assert sent is False
    assert socket.sent == []


def test_non_object_event_bodies_are_decode_errors():
    bad_media = to_telephony_event({"event": "media", "media": "abc"})
    bad_start = to_telephony_event({"event": "start", "start": "x"})

    assert bad_media.kind == "error" and isinstance(bad_media.error, DecodeError)
    assert bad_start.kind == "error" and isinstance(bad_start.error, DecodeError)


def test_non_object_media_body_does_not_end_the_stream():
    async def scenario():
        socket = FakeTwilioSocket()
        link = TwilioMediaLink(socket)
        socket.push({"event": "media", "media": "abc"})
        socket.push({"event": "start", "start": {"streamSid": "MZ123"}})
        socket.hang_up()
        return link, await asyncio.wait_for(_collect(link), 1.0)

    link, events = _run(scenario())
    assert [event.kind for event in events] == ["error", "start"]
    assert link.stream_sid == "MZ123"
