"""OpenAI chat completion client wrapper."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from config.settings import get_settings
from llm.base import BaseLLMClient
from relay.errors import LLMRequestError

LOGGER = logging.getLogger(__name__)


class OpenAIClient(BaseLLMClient):
    """Wrapper for the OpenAI Chat Completion API."""

    def __init__(self) -> None:
        settings = get_settings()
        self._client = AsyncOpenAI(
            api_key=settings.require_openai_api_key(),
            base_url=settings.openai_base_url or None,
        )
        self._model = settings.extraction_model

    async def chat_completion(
        self,
        messages: Iterable[dict[str, str]],
        *,
        response_format: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if response_format is not None:
            kwargs["response_format"] = response_format
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=list(messages),
                **kwargs,
            )
        except OpenAIError as exc:
            LOGGER.error("Chat completion call failed: %s", exc)
            raise LLMRequestError(str(exc)) from exc
        return response.model_dump()
