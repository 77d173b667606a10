"""Process-wide registry of active call sessions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from relay.transcript import Transcript

if TYPE_CHECKING:  # pragma: no cover
    from integrations.openai_realtime import ProviderLinkState, RealtimeLink

LOGGER = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    INIT = "init"
    LINKED = "linked"
    TEARDOWN = "teardown"
    DONE = "done"


@dataclass
class CallSession:
    call_id: str
    stream_sid: str | None = None
    transcript: Transcript = field(default_factory=Transcript)
    phase: SessionPhase = SessionPhase.INIT
    provider: RealtimeLink | None = None
    active_connections: int = 0
    teardown_started: bool = False

    @property
    def provider_link_state(self) -> ProviderLinkState | None:
        return self.provider.state if self.provider is not None else None

    def attach(self) -> None:
        self.active_connections += 1

    def detach(self) -> bool:
        """Release one telephony connection.

        Returns ``True`` exactly once per session: for the last connection to
        leave. That caller owns post-call processing and registry removal.
        """

        if self.active_connections > 0:
            self.active_connections -= 1
        if self.active_connections or self.teardown_started:
            return False
        self.teardown_started = True
        self.phase = SessionPhase.TEARDOWN
        return True


class SessionRegistry:
    """In-memory mapping from call identifier to session.

    Note: This is a single-process store. Sessions do not survive restarts.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, CallSession] = {}

    async def get_or_create(self, call_id: str) -> CallSession:
        async with self._lock:
            session = self._sessions.get(call_id)
            if session is None or session.teardown_started:
                # A session already being torn down belongs to its last connection.
                session = CallSession(call_id=call_id)
                self._sessions[call_id] = session
                LOGGER.info("Registered call session %s", call_id)
            return session

    async def remove(self, call_id: str, session: CallSession | None = None) -> CallSession | None:
        """Drop a session; when ``session`` is given, only if it is still the registered one."""

        async with self._lock:
            current = self._sessions.get(call_id)
            if current is None or (session is not None and current is not session):
                return None
            session = self._sessions.pop(call_id)
        if session is not None:
            LOGGER.info("Removed call session %s", call_id)
        return session

    def get(self, call_id: str) -> CallSession | None:
        return self._sessions.get(call_id)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
