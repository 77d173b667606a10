"""Delivery of extracted call records to the downstream webhook.

Dispatch is best-effort: the orchestrator schedules it after the call and never
waits for a confirmation. Failures surface as ``DispatchError`` and end at the
post-call processor's log. Retries are opt-in through ``RetryingDispatcher``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import httpx

from config.settings import Settings
from relay.errors import DispatchError
from relay.schemas import ExtractionResult

LOGGER = logging.getLogger(__name__)


class BaseDispatcher(ABC):
    @abstractmethod
    async def dispatch(self, record: ExtractionResult) -> None:
        """Deliver ``record``; raise ``DispatchError`` on failure."""


class LoggingDispatcher(BaseDispatcher):
    """Stub delivery that only logs the record."""

    async def dispatch(self, record: ExtractionResult) -> None:
        LOGGER.info("Information: %s", record.model_dump_json())


class WebhookDispatcher(BaseDispatcher):
    """POSTs records as JSON to the configured webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    async def dispatch(self, record: ExtractionResult) -> None:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=record.model_dump(), headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DispatchError(f"Webhook delivery to {self._url} failed: {exc}") from exc
        LOGGER.info("Webhook accepted record (status %s)", response.status_code)


class RetryingDispatcher(BaseDispatcher):
    """Retries another dispatcher with linear backoff."""

    def __init__(self, inner: BaseDispatcher, *, attempts: int, backoff: float = 1.0) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._inner = inner
        self._attempts = attempts
        self._backoff = backoff

    async def dispatch(self, record: ExtractionResult) -> None:
        for attempt in range(1, self._attempts + 1):
            try:
                await self._inner.dispatch(record)
                return
            except DispatchError as exc:
                if attempt == self._attempts:
                    raise
                LOGGER.warning("Dispatch attempt %d/%d failed: %s", attempt, self._attempts, exc)
                await asyncio.sleep(self._backoff * attempt)


def build_dispatcher(settings: Settings) -> BaseDispatcher:
    if not settings.webhook_enabled or not settings.webhook_url:
        if settings.webhook_enabled:
            LOGGER.warning("Webhook delivery enabled without WEBHOOK_URL; records will only be logged")
        return LoggingDispatcher()

    dispatcher: BaseDispatcher = WebhookDispatcher(
        settings.webhook_url,
        api_key=settings.webhook_api_key,
        timeout=settings.webhook_timeout_seconds,
    )
    if settings.webhook_max_attempts > 1:
        dispatcher = RetryingDispatcher(
            dispatcher,
            attempts=settings.webhook_max_attempts,
            backoff=settings.webhook_retry_backoff_seconds,
        )
    return dispatcher
