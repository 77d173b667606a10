"""Twilio Voice integration.

This module provides:
- The call-setup webhook returning TwiML that connects the call to a media stream.
- The media stream WebSocket relaying the call to the OpenAI Realtime API.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from api.dependencies import get_post_call_processor, get_realtime_link_factory, get_registry
from config.settings import get_settings
from integrations.openai_realtime import RealtimeLink
from integrations.twilio_streaming import TwilioMediaLink
from relay.extraction import PostCallProcessor
from relay.registry import SessionRegistry
from relay.session import CallOrchestrator

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

CALL_SID_HEADER = "x-twilio-call-sid"
MEDIA_STREAM_PATH = "/media-stream"
# Twilio may be configured with any webhook method.
INCOMING_CALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


def _twiml_response(xml: str) -> Response:
    return Response(content=xml, media_type="text/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _media_stream_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return _to_ws_url(f"{settings.public_base_url.rstrip('/')}{MEDIA_STREAM_PATH}")
    # Twilio only connects over TLS, so the scheme is fixed regardless of the proxy hop.
    host = request.headers.get("host") or request.url.netloc
    return f"wss://{host}{MEDIA_STREAM_PATH}"


def _twiml_connect_stream(*, stream_url: str) -> str:
    stream = escape(stream_url, {'"': "&quot;"})
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Say> </Say>"
        "<Connect>"
        f"<Stream url=\"{stream}\" />"
        "</Connect>"
        "</Response>"
    )


def _fallback_call_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


@router.api_route("/incoming-call", methods=INCOMING_CALL_METHODS)
async def incoming_call(request: Request) -> Response:
    stream_url = _media_stream_url(request)
    LOGGER.info("Incoming call, streaming to %s", stream_url)
    return _twiml_response(_twiml_connect_stream(stream_url=stream_url))


@router.websocket(MEDIA_STREAM_PATH)
async def media_stream(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_registry),
    post_call: PostCallProcessor = Depends(get_post_call_processor),
    link_factory: Callable[[], RealtimeLink] = Depends(get_realtime_link_factory),
) -> None:
    await websocket.accept()
    call_id = websocket.headers.get(CALL_SID_HEADER) or _fallback_call_id()
    LOGGER.info("Client connected (%s)", call_id)

    orchestrator = CallOrchestrator(
        call_id=call_id,
        telephony=TwilioMediaLink(websocket),
        provider=link_factory(),
        registry=registry,
        post_call=post_call,
        drain_timeout=get_settings().provider_drain_timeout_seconds,
    )
    await orchestrator.run()
