"""Conversion between Twilio media frames and OpenAI Realtime envelopes.

Both ends speak G.711 mu-law by configuration, so audio payloads are only
re-enveloped. The base64 text is passed through as-is and never decoded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

AGENT_MESSAGE_NOT_FOUND = "Agent message not found"


@dataclass(frozen=True)
class RealtimeSessionConfig:
    """Options sent in the one-time ``session.update`` message."""

    voice: str
    instructions: str
    input_audio_format: str = "g711_ulaw"
    output_audio_format: str = "g711_ulaw"
    turn_detection: str = "server_vad"
    transcription_model: str = "whisper-1"
    temperature: float = 0.8
    modalities: tuple[str, ...] = field(default=("text", "audio"))


def to_provider_frame(payload_b64: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": payload_b64}


def to_telephony_frame(delta_b64: str, stream_sid: str) -> dict[str, Any]:
    return {
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": delta_b64},
    }


def build_session_update(config: RealtimeSessionConfig) -> dict[str, Any]:
    return {
        "type": "session.update",
        "session": {
            "turn_detection": {"type": config.turn_detection},
            "input_audio_format": config.input_audio_format,
            "output_audio_format": config.output_audio_format,
            "voice": config.voice,
            "instructions": config.instructions,
            "modalities": list(config.modalities),
            "temperature": config.temperature,
            "input_audio_transcription": {"model": config.transcription_model},
        },
    }


def agent_transcript_from_response(message: dict[str, Any]) -> str:
    """Return the spoken transcript of a ``response.done`` event.

    Looks at the first output item and picks the first content block that has a
    non-empty ``transcript``. Missing or oddly shaped payloads yield
    ``AGENT_MESSAGE_NOT_FOUND``.
    """

    response = message.get("response")
    if not isinstance(response, dict):
        return AGENT_MESSAGE_NOT_FOUND
    output = response.get("output")
    if not isinstance(output, list) or not output or not isinstance(output[0], dict):
        return AGENT_MESSAGE_NOT_FOUND
    content = output[0].get("content")
    if not isinstance(content, list):
        return AGENT_MESSAGE_NOT_FOUND
    for block in content:
        if isinstance(block, dict) and block.get("transcript"):
            return str(block["transcript"])
    return AGENT_MESSAGE_NOT_FOUND
