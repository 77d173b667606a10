"""Per-call orchestration between the Twilio link and the realtime link."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from integrations.openai_realtime import RealtimeLink
from integrations.twilio_streaming import TwilioMediaLink
from relay.errors import DecodeError, LinkError
from relay.extraction import PostCallProcessor
from relay.registry import CallSession, SessionPhase, SessionRegistry
from relay.schemas import ProviderEvent, TelephonyEvent

LOGGER = logging.getLogger(__name__)


class CallOrchestrator:
    """Owns both links of one call and drives it from accept to cleanup.

    Phases: ``INIT`` (session registered, realtime link opening), ``LINKED``
    (both links up, events relayed), ``TEARDOWN`` (Twilio side closed, realtime
    link closed, post-call processing queued) and ``DONE`` (session removed).

    Realtime failures are logged and leave the Twilio connection open; the call
    continues without agent audio until Twilio hangs up.
    """

    def __init__(
        self,
        *,
        call_id: str,
        telephony: TwilioMediaLink,
        provider: RealtimeLink,
        registry: SessionRegistry,
        post_call: PostCallProcessor,
        drain_timeout: float = 5.0,
    ) -> None:
        self.call_id = call_id
        self._telephony = telephony
        self._provider = provider
        self._registry = registry
        self._post_call = post_call
        self._drain_timeout = drain_timeout
        self.session: CallSession | None = None
        self._provider_task: asyncio.Task[None] | None = None
        self._torn_down = False

    async def run(self) -> None:
        session = await self._registry.get_or_create(self.call_id)
        session.attach()
        session.provider = self._provider
        self.session = session

        self._provider_task = asyncio.create_task(
            self._pump_provider(session), name=f"realtime:{self.call_id}"
        )
        try:
            async for event in self._telephony.events():
                await self._on_telephony_event(session, event)
        finally:
            await self.teardown()

    async def teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True

        await self._provider.close()
        await self._drain_provider()

        session = self.session
        if session is None:
            return
        if not session.detach():
            LOGGER.info("Call %s: session still held by another connection", self.call_id)
            return

        transcript = session.transcript.render()
        LOGGER.info("Client disconnected (%s), %d transcript entries", self.call_id, len(session.transcript))
        LOGGER.debug("Full transcript for %s:\n%s", self.call_id, transcript)
        self._post_call.schedule(self.call_id, transcript)

        await self._registry.remove(self.call_id, session)
        session.phase = SessionPhase.DONE

    async def _drain_provider(self) -> None:
        task = self._provider_task
        if task is None:
            return
        done, _ = await asyncio.wait({task}, timeout=self._drain_timeout)
        if not done:
            LOGGER.warning("Call %s: realtime events not drained after %.1fs, cancelling", self.call_id, self._drain_timeout)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            return
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("Call %s: realtime event pump crashed", self.call_id, exc_info=task.exception())

    async def _pump_provider(self, session: CallSession) -> None:
        try:
            await self._provider.open()
        except LinkError as exc:
            LOGGER.error("Call %s: realtime link unavailable, call continues without agent: %s", self.call_id, exc)
        else:
            if session.phase is SessionPhase.INIT:
                session.phase = SessionPhase.LINKED

        async for event in self._provider.events():
            await self._on_provider_event(session, event)

    async def _on_telephony_event(self, session: CallSession, event: TelephonyEvent) -> None:
        if event.kind == "media" and event.payload:
            try:
                await self._provider.send_audio(event.payload)
            except LinkError as exc:
                LOGGER.error("Call %s: forwarding caller audio failed: %s", self.call_id, exc)
        elif event.kind == "start":
            session.stream_sid = event.stream_sid
        elif event.kind == "stop":
            LOGGER.info("Call %s: Twilio sent stop", self.call_id)
        elif event.kind == "error":
            self._log_link_error("twilio", event.error)

    async def _on_provider_event(self, session: CallSession, event: ProviderEvent) -> None:
        if event.kind == "audio_delta" and event.text:
            try:
                await self._telephony.send_audio(event.text)
            except LinkError as exc:
                LOGGER.error("Call %s: forwarding agent audio failed: %s", self.call_id, exc)
        elif event.kind == "user_transcript":
            await session.transcript.append("user", event.text or "")
            LOGGER.debug("User (%s): %s", self.call_id, event.text)
        elif event.kind == "agent_transcript":
            await session.transcript.append("agent", event.text or "")
            LOGGER.debug("Agent (%s): %s", self.call_id, event.text)
        elif event.kind == "session_updated":
            LOGGER.info("Call %s: realtime session updated", self.call_id)
        elif event.kind == "error":
            self._log_link_error("realtime", event.error)
        elif event.kind == "closed":
            LOGGER.info("Call %s: realtime link closed", self.call_id)

    def _log_link_error(self, link: str, error: Exception | None) -> None:
        if isinstance(error, DecodeError):
            LOGGER.warning("Call %s: dropped malformed %s frame: %s", self.call_id, link, error)
        else:
            LOGGER.error("Call %s: %s link error: %s", self.call_id, link, error)
