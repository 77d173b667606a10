"""OpenAI Realtime API link for one call.

Lifecycle:
1. ``open()`` connects the WebSocket (state ``open``).
2. The provider acknowledges with ``session.created``; the link answers with a
   single ``session.update`` (state ``configured``). A fallback timer sends the
   update if the acknowledgment never arrives.
3. ``send_audio()`` queues caller audio until configured, then appends it
   (state ``streaming``).
4. ``events()`` yields typed ``ProviderEvent`` values until ``closed``.
5. ``close()`` is idempotent and always ends the event stream.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosedOK, WebSocketException

from config.settings import Settings
from prompts.loader import AGENT_PROMPT_FILE, load_prompt
from relay.errors import DecodeError, LinkError
from relay.frames import (
    RealtimeSessionConfig,
    agent_transcript_from_response,
    build_session_update,
    to_provider_frame,
)
from relay.schemas import ProviderEvent

LOGGER = logging.getLogger(__name__)

# Event types worth a debug line when they arrive.
LOG_EVENT_TYPES = frozenset(
    {
        "response.content.done",
        "rate_limits.updated",
        "response.done",
        "input_audio_buffer.committed",
        "input_audio_buffer.speech_stopped",
        "input_audio_buffer.speech_started",
        "session.created",
        "response.text.done",
        "conversation.item.input_audio_transcription.completed",
    }
)

Connector = Callable[..., Awaitable[Any]]


class ProviderLinkState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CONFIGURED = "configured"
    STREAMING = "streaming"
    CLOSED = "closed"


def decode_provider_message(raw: str | bytes) -> dict[str, Any]:
    """Parse one inbound realtime frame into its JSON envelope."""

    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        message = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"Undecodable realtime frame: {exc}") from exc
    if not isinstance(message, dict):
        raise DecodeError("Realtime frame is not a JSON object")
    return message


class RealtimeLink:
    """Outbound duplex connection to the conversational model."""

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        session_config: RealtimeSessionConfig,
        configure_fallback: float | None = 1.0,
        connect: Connector | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._session_config = session_config
        self._configure_fallback = configure_fallback
        self._connect = connect or websocket_connect

        self.state = ProviderLinkState.CONNECTING
        self._ws: Any = None
        self._events: asyncio.Queue[ProviderEvent] = asyncio.Queue()
        self._pending_audio: list[str] = []
        self._send_lock = asyncio.Lock()
        self._configured = asyncio.Event()
        self._configure_sent = False
        self._close_requested = False
        self._closed_emitted = False
        self._reader_task: asyncio.Task[None] | None = None
        self._fallback_task: asyncio.Task[None] | None = None

    @property
    def pending_audio_frames(self) -> int:
        return len(self._pending_audio)

    async def open(self) -> None:
        if self.state is not ProviderLinkState.CONNECTING:
            raise LinkError(f"Realtime link cannot open from state {self.state.value}")

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        LOGGER.info("Connecting to the OpenAI Realtime API: %s", self._url)
        try:
            ws = await self._connect(self._url, additional_headers=headers)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            self.state = ProviderLinkState.CLOSED
            self._emit_closed()
            raise LinkError(f"Could not connect to the realtime API: {exc}") from exc

        if self.state is ProviderLinkState.CLOSED:
            with contextlib.suppress(WebSocketException, OSError):
                await ws.close()
            raise LinkError("Realtime link was closed while connecting")

        self._ws = ws
        self.state = ProviderLinkState.OPEN
        LOGGER.info("Connected to the OpenAI Realtime API")
        self._reader_task = asyncio.create_task(self._read_loop())
        if self._configure_fallback is not None:
            self._fallback_task = asyncio.create_task(self._configure_after(self._configure_fallback))

    async def wait_configured(self) -> None:
        await self._configured.wait()

    async def send_audio(self, payload_b64: str) -> bool:
        """Append caller audio.

        Returns ``False`` when the frame was dropped because the link is closed.
        Frames sent before the session is configured are queued in order.
        """

        async with self._send_lock:
            if self.state is ProviderLinkState.CLOSED:
                LOGGER.debug("Dropping caller audio, realtime link closed")
                return False
            if self.state in (ProviderLinkState.CONNECTING, ProviderLinkState.OPEN):
                self._pending_audio.append(payload_b64)
                return True
            try:
                await self._send_json(to_provider_frame(payload_b64))
            except LinkError:
                await self._fail()
                raise
            if self.state is ProviderLinkState.CONFIGURED:
                self.state = ProviderLinkState.STREAMING
            return True

    async def events(self) -> AsyncIterator[ProviderEvent]:
        while True:
            event = await self._events.get()
            yield event
            if event.kind == "closed":
                return

    async def close(self) -> None:
        if self._close_requested:
            return
        self._close_requested = True
        self.state = ProviderLinkState.CLOSED
        self._cancel_fallback()
        if self._pending_audio:
            LOGGER.info("Discarding %d queued audio frames on close", len(self._pending_audio))
            self._pending_audio.clear()
        if self._ws is not None:
            with contextlib.suppress(WebSocketException, OSError):
                await self._ws.close()
        if self._reader_task is None:
            self._emit_closed()

    async def _configure_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self._configure_sent:
            LOGGER.warning("No session.created after %.2fs, configuring session anyway", delay)
        await self._configure()

    async def _configure(self) -> None:
        async with self._send_lock:
            if self._configure_sent or self.state is not ProviderLinkState.OPEN:
                return
            self._configure_sent = True
            try:
                await self._send_json(build_session_update(self._session_config))
                if self.state is not ProviderLinkState.OPEN:
                    return
                self.state = ProviderLinkState.CONFIGURED
                pending, self._pending_audio = self._pending_audio, []
                for payload in pending:
                    await self._send_json(to_provider_frame(payload))
                if pending and self.state is ProviderLinkState.CONFIGURED:
                    self.state = ProviderLinkState.STREAMING
            except LinkError as exc:
                self._events.put_nowait(ProviderEvent("error", error=exc))
                await self._fail()
                return
        LOGGER.info("Realtime session configured (voice=%s)", self._session_config.voice)
        self._configured.set()

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                await self._handle_message(raw)
        except ConnectionClosedOK:
            pass
        except (WebSocketException, OSError) as exc:
            if not self._close_requested:
                self._events.put_nowait(
                    ProviderEvent("error", error=LinkError(f"Realtime connection lost: {exc}"))
                )
        finally:
            self.state = ProviderLinkState.CLOSED
            self._cancel_fallback()
            self._emit_closed()
            LOGGER.info("Disconnected from the OpenAI Realtime API")

    async def _handle_message(self, raw: str | bytes) -> None:
        try:
            message = decode_provider_message(raw)
        except DecodeError as exc:
            self._events.put_nowait(ProviderEvent("error", error=exc))
            return

        event_type = message.get("type")
        if event_type in LOG_EVENT_TYPES:
            LOGGER.debug("Received realtime event: %s", event_type)

        if event_type == "session.created":
            await self._configure()
        elif event_type == "session.updated":
            self._events.put_nowait(ProviderEvent("session_updated"))
        elif event_type == "response.audio.delta":
            delta = message.get("delta")
            if isinstance(delta, str) and delta:
                self._events.put_nowait(ProviderEvent("audio_delta", text=delta))
        elif event_type == "conversation.item.input_audio_transcription.completed":
            transcript = message.get("transcript")
            if not isinstance(transcript, str):
                self._events.put_nowait(
                    ProviderEvent("error", error=DecodeError("User transcription event without transcript"))
                )
                return
            self._events.put_nowait(ProviderEvent("user_transcript", text=transcript.strip()))
        elif event_type == "response.done":
            self._events.put_nowait(
                ProviderEvent("agent_transcript", text=agent_transcript_from_response(message))
            )
        elif event_type == "error":
            error = message.get("error")
            detail = error.get("message") if isinstance(error, dict) else None
            self._events.put_nowait(
                ProviderEvent("error", error=LinkError(f"Provider error: {detail or 'unknown'}"))
            )

    async def _send_json(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            raise LinkError("Realtime link is not connected")
        try:
            await self._ws.send(json.dumps(message))
        except (WebSocketException, OSError) as exc:
            raise LinkError(f"Realtime send failed: {exc}") from exc

    async def _fail(self) -> None:
        # Caller holds the send lock; a dead socket is never retried.
        self.state = ProviderLinkState.CLOSED
        self._cancel_fallback()
        if self._pending_audio:
            LOGGER.info("Discarding %d queued audio frames after send failure", len(self._pending_audio))
            self._pending_audio.clear()
        self._emit_closed()
        if self._ws is not None:
            with contextlib.suppress(WebSocketException, OSError):
                await self._ws.close()

    def _cancel_fallback(self) -> None:
        task = self._fallback_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _emit_closed(self) -> None:
        if self._closed_emitted:
            return
        self._closed_emitted = True
        self._events.put_nowait(ProviderEvent("closed"))


def session_config_from_settings(settings: Settings) -> RealtimeSessionConfig:
    return RealtimeSessionConfig(
        voice=settings.realtime_voice,
        instructions=load_prompt(AGENT_PROMPT_FILE),
        input_audio_format=settings.realtime_audio_format,
        output_audio_format=settings.realtime_audio_format,
        turn_detection=settings.realtime_turn_detection,
        transcription_model=settings.realtime_transcription_model,
        temperature=settings.realtime_temperature,
    )


def build_realtime_link(settings: Settings) -> RealtimeLink:
    """Instantiate a link for one call from application settings."""

    return RealtimeLink(
        url=settings.realtime_endpoint,
        api_key=settings.require_openai_api_key(),
        session_config=session_config_from_settings(settings),
        configure_fallback=settings.realtime_configure_fallback_seconds,
    )
