"""Append-only call transcript shared by both links of a call."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from relay.schemas import Speaker

_LABELS: dict[str, str] = {"user": "User", "agent": "Agent"}


@dataclass(frozen=True)
class TranscriptEntry:
    speaker: Speaker
    text: str

    def render(self) -> str:
        return f"{_LABELS[self.speaker]}: {self.text}"


class Transcript:
    """Ordered utterances of one call.

    Appends are serialized per call so entries keep their arrival order even when
    both links deliver concurrently. Entries are immutable and never removed.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._entries: list[TranscriptEntry] = []

    async def append(self, speaker: Speaker, text: str) -> TranscriptEntry:
        if speaker not in _LABELS:
            raise ValueError(f"Unknown speaker: {speaker!r}")
        entry = TranscriptEntry(speaker=speaker, text=text)
        async with self._lock:
            self._entries.append(entry)
        return entry

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def render(self) -> str:
        return "".join(f"{entry.render()}\n" for entry in self._entries)

    def __len__(self) -> int:
        return len(self._entries)
