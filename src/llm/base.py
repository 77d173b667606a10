"""Shared abstractions for completion model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any


class BaseLLMClient(ABC):
    """Abstract base class for chat completion providers."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: Iterable[dict[str, str]],
        *,
        response_format: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Return the raw chat completion payload (``choices`` etc.) as a dict.

        Transport-level failures raise ``LLMRequestError``.
        """
