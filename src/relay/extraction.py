"""Post-call structured extraction of customer details from the transcript."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from integrations.webhook import BaseDispatcher
from llm.base import BaseLLMClient
from prompts.loader import EXTRACTION_PROMPT_FILE, load_prompt
from relay.errors import DispatchError, ExtractionError, LLMRequestError
from relay.schemas import EXTRACTION_JSON_SCHEMA, ExtractionResult

LOGGER = logging.getLogger(__name__)

RESPONSE_FORMAT: dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "customer_details_extraction",
        "schema": EXTRACTION_JSON_SCHEMA,
    },
}


def _message_content(payload: dict[str, Any]) -> str:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise ExtractionError("Unexpected response structure: no choices")
    message = choices[0].get("message")
    if not isinstance(message, dict):
        raise ExtractionError("Unexpected response structure: no message")
    content = message.get("content")
    if not isinstance(content, str) or not content:
        raise ExtractionError("Unexpected response structure: empty content")
    return content


class TranscriptExtractor:
    """Asks a completion model for the six customer fields of a call."""

    def __init__(self, llm_client: BaseLLMClient) -> None:
        self._llm = llm_client
        self._system_prompt = load_prompt(EXTRACTION_PROMPT_FILE)

    async def extract(self, transcript: str) -> ExtractionResult:
        messages = [
            {"role": "system", "content": self._system_prompt},
            {"role": "user", "content": transcript},
        ]
        try:
            payload = await self._llm.chat_completion(messages, response_format=RESPONSE_FORMAT)
        except LLMRequestError as exc:
            raise ExtractionError(f"Completion request failed: {exc}") from exc

        content = _message_content(payload)
        try:
            return ExtractionResult.model_validate_json(content)
        except ValidationError as exc:
            LOGGER.debug("Unparseable extraction content: %s", content)
            raise ExtractionError(f"Extraction content does not match schema: {exc}") from exc


class PostCallProcessor:
    """Runs extraction and webhook dispatch once a call has ended.

    ``process`` never raises extraction or dispatch failures; they are logged and
    the call simply produces no record. ``schedule`` runs it in the background so
    connection teardown does not wait for the completion model.
    """

    def __init__(self, extractor: TranscriptExtractor, dispatcher: BaseDispatcher) -> None:
        self._extractor = extractor
        self._dispatcher = dispatcher
        self._tasks: set[asyncio.Task[ExtractionResult | None]] = set()

    async def process(self, call_id: str, transcript: str) -> ExtractionResult | None:
        try:
            return await self._process(call_id, transcript)
        except Exception:
            LOGGER.exception("Post-call processing crashed for call %s", call_id)
            return None

    async def _process(self, call_id: str, transcript: str) -> ExtractionResult | None:
        LOGGER.info("Starting transcript processing for call %s (%d chars)", call_id, len(transcript))
        try:
            record = await self._extractor.extract(transcript)
        except ExtractionError as exc:
            LOGGER.error("Extraction failed for call %s: %s", call_id, exc)
            return None

        try:
            await self._dispatcher.dispatch(record)
        except DispatchError as exc:
            LOGGER.error("Dispatch failed for call %s: %s", call_id, exc)
        else:
            LOGGER.info("Extracted and sent customer details for call %s", call_id)
        return record

    def schedule(self, call_id: str, transcript: str) -> asyncio.Task[ExtractionResult | None]:
        task = asyncio.create_task(self.process(call_id, transcript), name=f"post-call:{call_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
