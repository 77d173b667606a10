from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from config.settings import Settings
from fakes import sample_record
from integrations.webhook import (
    BaseDispatcher,
    LoggingDispatcher,
    RetryingDispatcher,
    WebhookDispatcher,
    build_dispatcher,
)
from relay.errors import DispatchError


def _run(coro):
    return asyncio.run(coro)


def test_webhook_posts_record_as_json():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    dispatcher = WebhookDispatcher(
        "https://hooks.example.test/call",
        api_key="hook-secret",
        transport=httpx.MockTransport(handler),
    )
    _run(dispatcher.dispatch(sample_record()))

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert seen[0].headers["authorization"] == "Bearer hook-secret"
    assert json.loads(seen[0].content) == sample_record().model_dump()


def test_webhook_error_status_raises_dispatch_error():
    dispatcher = WebhookDispatcher(
        "https://hooks.example.test/call",
        transport=httpx.MockTransport(lambda request: httpx.Response(502)),
    )
    with pytest.raises(DispatchError):
        _run(dispatcher.dispatch(sample_record()))


def test_webhook_transport_error_raises_dispatch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    dispatcher = WebhookDispatcher("https://hooks.example.test/call", transport=httpx.MockTransport(handler))
    with pytest.raises(DispatchError, match="unreachable"):
        _run(dispatcher.dispatch(sample_record()))


class FlakyDispatcher(BaseDispatcher):
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.attempts = 0

    async def dispatch(self, record) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise DispatchError("try again")


def test_retrying_dispatcher_retries_until_success():
    inner = FlakyDispatcher(failures=2)
    _run(RetryingDispatcher(inner, attempts=3, backoff=0).dispatch(sample_record()))
    assert inner.attempts == 3


def test_retrying_dispatcher_gives_up_after_attempts():
    inner = FlakyDispatcher(failures=5)
    with pytest.raises(DispatchError):
        _run(RetryingDispatcher(inner, attempts=2, backoff=0).dispatch(sample_record()))
    assert inner.attempts == 2


def test_build_dispatcher_defaults_to_logging_stub():
    settings = Settings(_env_file=None, openai_api_key="sk", webhook_url="https://hooks.example.test")
    assert isinstance(build_dispatcher(settings), LoggingDispatcher)


def test_build_dispatcher_enables_delivery_and_retries():
    plain = Settings(_env_file=None, openai_api_key="sk", webhook_enabled=True, webhook_url="https://hooks.example.test")
    retrying = Settings(
        _env_file=None,
        openai_api_key="sk",
        webhook_enabled=True,
        webhook_url="https://hooks.example.test",
        webhook_max_attempts=3,
    )
    assert isinstance(build_dispatcher(plain), WebhookDispatcher)
    assert isinstance(build_dispatcher(retrying), RetryingDispatcher)


def test_logging_dispatcher_logs_record(caplog):
    caplog.set_level("INFO", logger="integrations.webhook")
    _run(LoggingDispatcher().dispatch(sample_record()))
    assert "Belgium" in caplog.text
