"""Domain-specific exceptions for the call relay.

These exceptions are safe to import from API layers without pulling in network clients.
"""

from __future__ import annotations


class RelayError(Exception):
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ConfigError(RelayError):
    default_detail = "Missing or invalid configuration."


class LinkError(RelayError):
    default_detail = "Duplex connection failed."


class DecodeError(RelayError):
    default_detail = "Malformed inbound frame."


class LLMRequestError(RelayError):
    default_detail = "Completion request failed."


class ExtractionError(RelayError):
    default_detail = "Transcript extraction failed."


class DispatchError(RelayError):
    default_detail = "Webhook dispatch failed."
