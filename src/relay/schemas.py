"""Typed records exchanged between the links, the orchestrator and the extractor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

Speaker = Literal["user", "agent"]

ProviderEventKind = Literal[
    "audio_delta",
    "agent_transcript",
    "user_transcript",
    "session_updated",
    "error",
    "closed",
]

TelephonyEventKind = Literal["start", "media", "stop", "mark", "other", "error"]


@dataclass(frozen=True)
class ProviderEvent:
    """Event surfaced by the realtime provider link.

    ``text`` carries the base64 audio for ``audio_delta`` and the utterance for
    transcript events; ``error`` is set only for ``error`` events.
    """

    kind: ProviderEventKind
    text: str | None = None
    error: Exception | None = None


@dataclass(frozen=True)
class TelephonyEvent:
    """Event surfaced by the Twilio media link."""

    kind: TelephonyEventKind
    stream_sid: str | None = None
    payload: str | None = None
    raw: dict[str, Any] | None = None
    error: Exception | None = None


class ExtractionResult(BaseModel):
    """Customer details extracted from a finished call."""

    model_config = ConfigDict(extra="ignore")

    customer_name: str
    country: str
    invoices_due_date: str
    service_delivery: str
    factoring_contract: str
    tax_debts: str


EXTRACTION_FIELDS: tuple[str, ...] = tuple(ExtractionResult.model_fields)

EXTRACTION_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {name: {"type": "string"} for name in EXTRACTION_FIELDS},
    "required": list(EXTRACTION_FIELDS),
}
