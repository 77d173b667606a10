from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from relay.errors import DecodeError, LinkError
from relay.frames import to_telephony_frame
from relay.schemas import TelephonyEvent

LOGGER = logging.getLogger(__name__)


class TelephonyLinkState(str, Enum):
    CONNECTED = "connected"
    STREAMING = "streaming"
    CLOSED = "closed"


def parse_twilio_ws_message(text: str) -> dict[str, Any]:
    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Undecodable Twilio frame: {exc}") from exc
    if not isinstance(message, dict):
        raise DecodeError("Twilio frame is not a JSON object")
    return message


def to_telephony_event(message: dict[str, Any]) -> TelephonyEvent:
    event = str(message.get("event") or "")
    if event == "start":
        start = message.get("start") or {}
        if not isinstance(start, dict):
            return TelephonyEvent("error", raw=message, error=DecodeError("start event body is not an object"))
        stream_sid = start.get("streamSid") or message.get("streamSid")
        if not isinstance(stream_sid, str) or not stream_sid:
            return TelephonyEvent("error", raw=message, error=DecodeError("start event without streamSid"))
        return TelephonyEvent("start", stream_sid=stream_sid, raw=message)
    if event == "media":
        media = message.get("media") or {}
        if not isinstance(media, dict):
            return TelephonyEvent("error", raw=message, error=DecodeError("media event body is not an object"))
        payload = media.get("payload")
        if not isinstance(payload, str) or not payload:
            return TelephonyEvent("error", raw=message, error=DecodeError("media event without payload"))
        if media.get("track") and media.get("track") != "inbound":
            return TelephonyEvent("other", raw=message)
        return TelephonyEvent("media", payload=payload, raw=message)
    if event == "stop":
        return TelephonyEvent("stop", raw=message)
    if event == "mark":
        return TelephonyEvent("mark", raw=message)
    return TelephonyEvent("other", raw=message)


class TwilioMediaLink:
    """Inbound Twilio Media Streams connection for one call.

    Outbound audio produced before the ``start`` event is buffered and flushed
    once the stream identifier is known, so no frame leaves without a streamSid.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self.state = TelephonyLinkState.CONNECTED
        self.stream_sid: str | None = None
        self._pending_audio: list[str] = []

    async def events(self) -> AsyncIterator[TelephonyEvent]:
        try:
            while self.state is not TelephonyLinkState.CLOSED:
                try:
                    text = await self._websocket.receive_text()
                except WebSocketDisconnect:
                    LOGGER.info("Twilio media stream disconnected")
                    return

                try:
                    event = to_telephony_event(parse_twilio_ws_message(text))
                except DecodeError as exc:
                    yield TelephonyEvent("error", error=exc)
                    continue

                if event.kind == "start":
                    LOGGER.info("Incoming stream has started: %s", event.stream_sid)
                    try:
                        await self._flush_pending(event.stream_sid)
                    except LinkError as exc:
                        yield TelephonyEvent("error", error=exc)
                    self.stream_sid = event.stream_sid
                    self.state = TelephonyLinkState.STREAMING

                yield event

                if event.kind == "stop":
                    LOGGER.info("Twilio stream stopped: %s", self.stream_sid)
                    return
        finally:
            self.state = TelephonyLinkState.CLOSED
            if self._pending_audio:
                LOGGER.info("Discarding %d agent audio frames never framed for Twilio", len(self._pending_audio))
                self._pending_audio.clear()

    async def send_audio(self, payload_b64: str) -> bool:
        """Send agent audio to the caller; returns ``False`` if the link is closed."""

        if self.state is TelephonyLinkState.CLOSED:
            LOGGER.debug("Dropping agent audio, Twilio link closed")
            return False
        if self.stream_sid is None:
            self._pending_audio.append(payload_b64)
            return True
        await self._send_frame(payload_b64, self.stream_sid)
        return True

    async def _flush_pending(self, stream_sid: str) -> None:
        # New frames keep queueing until stream_sid is published, preserving order.
        while self._pending_audio:
            await self._send_frame(self._pending_audio.pop(0), stream_sid)

    async def _send_frame(self, payload_b64: str, stream_sid: str) -> None:
        frame = to_telephony_frame(payload_b64, stream_sid)
        try:
            await self._websocket.send_text(json.dumps(frame))
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise LinkError(f"Twilio send failed: {exc}") from exc
